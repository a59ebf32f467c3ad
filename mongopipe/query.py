"""
### Query

A `Query` is a declarative description of what to fetch from a class (table):
constraints, ordering, pagination, projection.

```python
from mongopipe import Query

q = Query('Post', published=True).where(votes__gte=10, title__starts_with='How')
q.order('-created_at').limit(10)

q.compile()
# -> {'where': '{"published": true, "votes": {"$gte": 10}, "title": {"$regex": "^How", "$options": "i"}}',
#     'order': '-createdAt', 'limit': 10}
```

Conditions are given as keyword arguments: `field__operator=value`.
A key without an operator means equality: `published=True` is the same as `published__eq=True`.
Operator tags are looked up in the operator registry: an unknown operator is an error.

Conditions can also be given as `Constraint` objects, or as `(field, operator, value)` tuples:

```python
q.where(Constraint('votes', 'gte', 10), ('title', 'starts_with', 'How'))
```

#### Pipelines
Some operators (joins, array set algebra, ACL filters) can not be expressed as a flat filter.
When a query has them, `q.requires_pipeline()` is true, and the query runs as an aggregation pipeline:

```python
q = Query('Post').where(tags__set_equals=['a', 'b']).limit(5)
q.build_pipeline()
# -> [{'$match': ...}, {'$match': {'$expr': {'$setEquals': ...}}}, {'$limit': 5}]
```

`compile_pipeline()` also runs the pipeline through the sandbox validator,
and, given a `RateLimiter`, makes sure the caller did not exceed its limit.

#### Combining queries

* `q.or_where(...)`: either the conditions of the query hold, or the new ones
* `Query.or_(q1, q2, ...)`: any of the queries; they must all be on the same class
* `Query.and_(q1, q2, ...)`: all of the queries

#### Reuse
Every method modifies the query in place and returns it, so calls can be chained.
Use `clone()` to get an independent copy: a template query can be cloned and specialized many times.
"""

import json
import logging
from copy import deepcopy, Error as CopyError
from itertools import chain

from .acl import READ_FIELD, WRITE_FIELD
from .constraint import Constraint, CompoundConstraint, compile_filter
from .exc import ArgumentError, TableMismatchError, ClientNotBoundError
from .naming import format_field
from .operators import registry as default_registry
from .pipeline import PipelineBuilder, count_distinct_stages, distinct_stages
from .sandbox import PipelineValidator
from .util import QuerySettingsDict

logger = logging.getLogger(__name__)


class Query:
    """ A query on a class (table) """

    #: The registry to look operators up in. Override it in a subclass to use custom operators.
    operators = default_registry

    #: Declarative state: copied by clone()
    _DECLARATIVE_LISTS = ('_where', '_order', '_keys', '_includes')

    def __init__(self, table: str, settings=None, **conditions):
        """ Init a query

        :param table: The class to query, e.g. 'Post' or '_User'
        :param settings: Query settings: `QuerySettingsDict`, or a plain dict with the same keys
        :param conditions: Initial conditions, `field__operator=value`
        :raises ArgumentError: no table
        :raises KeyError: unknown setting
        """
        if not table:
            raise ArgumentError('Query: table name must not be empty')

        self.table = table
        self.settings = QuerySettingsDict.coerce(settings)

        # Declarative state
        self._where = []
        self._order = []
        self._keys = []
        self._includes = []
        self._limit = None
        self._skip = 0
        self._count = False
        self._cache = None
        self._use_master_key = None

        # Transient state: not copied
        self._client = None
        self._results = None

        if conditions:
            self.where(**conditions)

    # region Constraints

    def where(self, *constraints, **conditions) -> 'Query':
        """ Add conditions. All of them have to hold.

            :param constraints: `Constraint` objects, `(field, operator, value)` tuples, dicts of `field__operator: value`
            :param conditions: `field__operator=value`
            :raises InvalidOperatorError: unknown operator
            :raises ArgumentError: invalid value
        """
        self._where.extend(self._make_constraints(constraints, conditions))
        self._results = None
        return self

    def or_where(self, *constraints, **conditions) -> 'Query':
        """ Either the current conditions hold, or the new ones

            ```python
            Query('Post', published=True).or_where(author=me)
            # -> {'$or': [{'published': True}, {'author': {...}}]}
            ```

            Subsequent calls add more alternatives to the same `$or`.
            Giving no conditions changes nothing.

            :raises ArgumentError: pipeline-only constraints can not be put into `$or`
        """
        new = self._make_constraints(constraints, conditions)
        if not new:
            return self

        current = self._where
        if len(current) == 1 and isinstance(current[0], CompoundConstraint) and current[0].combinator == 'or':
            groups = current[0].groups + (tuple(new),)
        elif current:
            groups = (tuple(current), tuple(new))
        else:
            groups = (tuple(new),)

        # CompoundConstraint rejects pipeline-only constraints on either side
        self._where = [CompoundConstraint('or', groups)]
        self._results = None
        return self

    @classmethod
    def or_(cls, *queries) -> 'Query':
        """ A query that matches what any of the queries match

            Queries without conditions are skipped.

            :raises ArgumentError: no queries
            :raises TableMismatchError: queries are on different classes
        """
        queries = cls._same_table_queries(queries)
        result = cls(queries[0].table, settings=queries[0].settings.and_more())
        for q in queries:
            if q._where:
                result.or_where(*q._where)
        return result

    @classmethod
    def and_(cls, *queries) -> 'Query':
        """ A query that matches what all of the queries match

            :raises ArgumentError: no queries
            :raises TableMismatchError: queries are on different classes
        """
        queries = cls._same_table_queries(queries)
        result = cls(queries[0].table, settings=queries[0].settings.and_more())
        for q in queries:
            result.where(*q._where)
        return result

    @staticmethod
    def _same_table_queries(queries) -> list:
        # Accept both or_(q1, q2) and or_([q1, q2])
        queries = [q
                   for q in chain.from_iterable(q if isinstance(q, (list, tuple)) else (q,) for q in queries)
                   if q is not None]
        if not queries:
            raise ArgumentError('At least one query is required')

        tables = sorted({q.table for q in queries})
        if len(tables) > 1:
            raise TableMismatchError(tables)
        return queries

    def readable_by(self, subjects) -> 'Query':
        """ Only records that can be read by the subjects (users, roles, '*') """
        return self.where(Constraint(READ_FIELD, 'readable_by', subjects, self.settings, self.operators))

    def writable_by(self, subjects) -> 'Query':
        """ Only records that can be modified by the subjects (users, roles, '*') """
        return self.where(Constraint(WRITE_FIELD, 'writable_by', subjects, self.settings, self.operators))

    def _make_constraints(self, constraints, conditions) -> list:
        res = []
        for c in constraints:
            if isinstance(c, (Constraint, CompoundConstraint)):
                res.append(c)
            elif isinstance(c, dict):
                res.extend(self._make_constraint_from_key(k, v) for k, v in c.items())
            elif isinstance(c, tuple) and len(c) == 3 and isinstance(c[0], str):
                res.append(Constraint(c[0], c[1], c[2], self.settings, self.operators))
            elif isinstance(c, (list, tuple)):
                res.extend(self._make_constraints(c, {}))
            else:
                raise ArgumentError('Not a constraint: {!r}'.format(c))

        res.extend(self._make_constraint_from_key(k, v) for k, v in conditions.items())
        return res

    def _make_constraint_from_key(self, key: str, value) -> Constraint:
        """ Make a constraint from `field__operator`, or just `field` for equality """
        field, sep, operator = key.rpartition('__')
        if not sep:
            field, operator = key, 'eq'
        return Constraint(field, operator, value, self.settings, self.operators)

    # endregion

    # region Ordering, projection, pagination

    def order(self, *fields) -> 'Query':
        """ Sort by fields. `-field` or `field-` for descending order.

            ```python
            q.order('-created_at', 'title')  # -> 'order': '-createdAt,title'
            ```
        """
        for field in fields:
            for name in str(field).split(','):
                name = name.strip()
                if not name:
                    continue
                desc = name.startswith('-') or name.endswith('-')
                name = format_field(name.strip('+-'), self.settings['field_formatter'])
                self._order.append(('-' if desc else '') + name)
        self._results = None
        return self

    def keys(self, *fields) -> 'Query':
        """ Only fetch these fields """
        self._keys.extend(format_field(f, self.settings['field_formatter']) for f in fields)
        self._results = None
        return self

    def includes(self, *fields) -> 'Query':
        """ Fetch the objects that these pointer fields point to """
        self._includes.extend(format_field(f, self.settings['field_formatter']) for f in fields)
        self._results = None
        return self

    def limit(self, n) -> 'Query':
        """ Fetch at most `n` records. `None` removes the limit.

            The limit is clamped to the `max_limit` setting.
        """
        if n is not None:
            n = max(int(n), 0)
            max_limit = self.settings['max_limit']
            if max_limit is not None and n > max_limit:
                logger.debug('Query(%s): limit %s clamped to %s', self.table, n, max_limit)
                n = max_limit
        self._limit = n
        self._results = None
        return self

    def skip(self, n) -> 'Query':
        """ Skip the first `n` records """
        self._skip = max(int(n or 0), 0)
        self._results = None
        return self

    def count(self, value: bool = True) -> 'Query':
        """ Only count the records; don't fetch them """
        self._count = bool(value)
        self._results = None
        return self

    def cache(self, value: bool = True) -> 'Query':
        """ Allow (or disallow) serving results from cache. Overrides the `cache` setting. """
        self._cache = bool(value)
        return self

    def use_master_key(self, value: bool = True) -> 'Query':
        """ Run with (or without) the master key. Overrides the `use_master_key` setting. """
        self._use_master_key = bool(value)
        return self

    def resolve_cache(self, override=None) -> bool:
        """ Should the results be cached? A per-call override > the query flag > the setting """
        return _first_not_none(override, self._cache, self.settings['cache'])

    def resolve_use_master_key(self, override=None) -> bool:
        """ Use the master key? A per-call override > the query flag > the setting """
        return _first_not_none(override, self._use_master_key, self.settings['use_master_key'])

    @property
    def constraints(self) -> tuple:
        return tuple(self._where)

    @property
    def order_fields(self) -> list:
        return list(self._order)

    @property
    def key_fields(self) -> list:
        return list(self._keys)

    @property
    def include_fields(self) -> list:
        return list(self._includes)

    @property
    def limit_value(self):
        return self._limit

    @property
    def skip_value(self) -> int:
        return self._skip

    # endregion

    # region Copying

    def clone(self) -> 'Query':
        """ Get an independent copy of the query

            Modifying the copy never affects the original, and vice versa.
            Results and the bound client are not copied.
        """
        cls = self.__class__
        result = cls.__new__(cls)
        result.__dict__.update(self.__dict__)
        result.settings = self.settings.and_more()

        for name in self._DECLARATIVE_LISTS:
            value = getattr(self, name)
            try:
                setattr(result, name, deepcopy(value))
            except (TypeError, CopyError) as e:
                # Some value can't be deep-copied: the list itself still has to be a new one
                logger.warning('Query(%s).clone(): %s could not be deep-copied, copying shallow: %s',
                               self.table, name.lstrip('_'), e)
                setattr(result, name, list(value))

        # Transient state
        result._client = None
        result._results = None
        return result

    def __copy__(self):
        return self.clone()

    # endregion

    # region Compilation

    def requires_pipeline(self) -> bool:
        """ Does the query have to run as an aggregation pipeline? """
        return any(c.requires_pipeline for c in self._where)

    def flat_constraints(self) -> list:
        """ Constraints that compile into a flat filter """
        return [c for c in self._where if not c.requires_pipeline]

    def pipeline_fragments(self) -> list:
        """ Compiled pipeline-only constraints, in the order they were added

            :rtype: list[PipelineFragment]
        """
        return [c.compile() for c in self._where if c.requires_pipeline]

    def compile_where(self) -> dict:
        """ The flat filter of the query. Pipeline-only constraints are not included. """
        return compile_filter(self.flat_constraints())

    def compile(self, encode: bool = True, include_class_name: bool = False) -> dict:
        """ Compile into REST query parameters

            ```python
            {'where': '{"votes": {"$gt": 10}}', 'order': '-createdAt', 'limit': 10, 'skip': 20, 'keys': 'title,votes'}
            ```

            Only the flat part is included: see `build_pipeline()` for queries that `requires_pipeline()`.

            :param encode: JSON-encode `where`
            :param include_class_name: Add `className`; used when the query is nested into another one
        """
        params = {}
        if self._limit is not None and self._limit > 0:
            params['limit'] = self._limit
        if self._skip > 0:
            params['skip'] = self._skip
        if self._includes:
            params['include'] = ','.join(self._includes)
        if self._keys:
            params['keys'] = ','.join(self._keys)
        if self._order:
            params['order'] = ','.join(self._order)

        where = self.compile_where()
        if where:
            params['where'] = json.dumps(where) if encode else where

        if self._count:
            params['limit'] = 0
            params['count'] = 1

        if include_class_name:
            params['className'] = self.table
        return params

    def pipeline(self) -> list:
        """ The stages of pipeline-only constraints, without the `$match` & pagination """
        return [stage
                for fragment in self.pipeline_fragments()
                for stage in fragment.stages]

    def build_pipeline(self) -> list:
        """ The complete aggregation pipeline: `$match`, constraint stages, `$sort`, `$limit`, `$skip` """
        stages = PipelineBuilder.from_query(self).build()
        logger.debug('Query(%s): compiled into a pipeline of %s stages', self.table, len(stages))
        return stages

    def compile_pipeline(self, validate: bool = None, rate_limiter=None, caller=None) -> list:
        """ Build the pipeline, and make sure it's safe to run

            :param validate: Run the pipeline through the sandbox validator. Default: the `validate_pipelines` setting
            :param rate_limiter: A `RateLimiter` to check the caller against
            :param caller: The caller to rate-limit
            :raises RateLimitExceeded: the caller has used up its limit
            :raises PipelineSecurityError: the pipeline has been rejected by the validator
        """
        if rate_limiter is not None:
            rate_limiter.check(caller)

        stages = self.build_pipeline()

        if validate is None:
            validate = self.settings['validate_pipelines']
        if validate:
            PipelineValidator.from_settings(self.settings).validate(stages)
        return stages

    def count_pipeline(self) -> list:
        """ A pipeline that counts the matching records: `[{count: N}]` """
        return PipelineBuilder.from_query(self, paginate=False).count('count').build()

    def count_distinct_pipeline(self, field: str) -> list:
        """ A pipeline that counts the distinct values of a field among the matching records """
        builder = PipelineBuilder.from_query(self, paginate=False)
        builder.add_stages(*count_distinct_stages(field, self.settings['field_formatter']))
        return builder.build()

    def distinct_pipeline(self, field: str) -> list:
        """ A pipeline that gets the distinct values of a field among the matching records """
        builder = PipelineBuilder.from_query(self, paginate=False)
        builder.add_stages(*distinct_stages(field, self.settings['field_formatter']))
        return builder.build()

    # endregion

    # region Execution

    def bind(self, client) -> 'Query':
        """ Bind the query to a client that will run it

            The client is any object with these methods:

            * `find_objects(table, params, cache=, use_master_key=)`: run a REST query
            * `aggregate_objects(table, pipeline, cache=, use_master_key=)`: run an aggregation pipeline
        """
        self._client = client
        self._results = None
        return self

    def results(self, cache=None) -> list:
        """ Run the query, and get the results

            Results are kept until the query is modified.

            :param cache: Override the cache flag for this call
            :raises ClientNotBoundError: bind() was not called
        """
        if self._results is not None:
            return self._results
        if self._client is None:
            raise ClientNotBoundError('Query({}) is not bound to a client'.format(self.table))

        options = dict(cache=self.resolve_cache(cache),
                       use_master_key=self.resolve_use_master_key())
        if self.requires_pipeline():
            logger.debug('Query(%s): running as an aggregation pipeline', self.table)
            self._results = self._client.aggregate_objects(self.table, self.compile_pipeline(), **options)
        else:
            self._results = self._client.find_objects(self.table, self.compile(encode=False), **options)
        return self._results

    # endregion

    def __repr__(self):
        return 'Query({}: {!r})'.format(self.table, self._where)


def _first_not_none(*values):
    for value in values:
        if value is not None:
            return value
    return None
