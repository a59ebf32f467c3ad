"""
### Aggregation Pipelines

Some constraints can not be expressed as a flat filter: joins through pointers, array set algebra,
positional array access, ACL filtering. For those, a Query is compiled into an aggregation pipeline:
a list of stages, each stage being a single-key dict.

The stages always come in this order:

1. `$match` with all the flat constraints of the query (if any)
2. Stages of pipeline-only constraints, in the order they were added to the query
3. `$sort`, if the query is ordered
4. `$limit`, then `$skip`

Pipelines work on raw documents, where a few things are named differently than in a REST filter:

* Pointers are kept in `_p_<field>` columns as `"ClassName$objectId"` strings
* `objectId`, `createdAt`, `updatedAt` are `_id`, `_created_at`, `_updated_at`
* Dates are compared as ISO strings

`PipelineBuilder` takes care of that when it converts a flat filter into a `$match` stage.

#### Linked pointers
`linked_pointer_stages()` compares a pointer on this record with a pointer on a record it points to.

Example: does the author of the post own the project the post belongs to?

```python
linked_pointer_stages('author', through='project', field='owner')
# -> [
#   {'$addFields': {'_p_project_id': {'$substr': ['$_p_project', 8, -1]}}},
#   {'$lookup': {'from': 'Project', 'localField': '_p_project', 'foreignField': '_id', 'as': 'project_data'}},
#   {'$match': {'$expr': {'$eq': [{'$arrayElemAt': ['$project_data._p_owner', 0]}, '$_p_author']}}},
# ]
```
"""

from copy import deepcopy

from .exc import ArgumentError
from .naming import columnize, pointer_field, storage_field, classify, lookup_alias, STORAGE_FIELDS
from .types import encode_for_aggregation, is_parse_type


#: Comparators for linked pointers
LINKED_POINTER_COMPARATORS = frozenset(('$eq', '$ne'))

#: Logical operators in a filter, which hold a list of filters
_LOGICAL_OPERATORS = frozenset(('$or', '$and', '$nor'))


class PipelineBuilder:
    """ Assembles an aggregation pipeline, stage by stage

        All methods return `self`, so that calls can be chained:

            PipelineBuilder('Post').match({'published': True}).limit(10).build()
    """

    def __init__(self, table: str = None):
        self.table = table
        self.stages = []

    @classmethod
    def from_query(cls, query, paginate: bool = True) -> 'PipelineBuilder':
        """ Make a builder with the stages of a Query

            :type query: mongopipe.query.Query
            :param paginate: Add `$sort`, `$limit`, `$skip`. Counting pipelines go without them.
        """
        builder = cls(query.table)
        builder.match(aggregation_filter(query.compile_where()))
        for fragment in query.pipeline_fragments():
            builder.add_stages(*fragment.stages)
        if not paginate:
            return builder
        if query.order_fields:
            builder.sort(query.order_fields)
        if query.limit_value:
            builder.limit(query.limit_value)
        if query.skip_value:
            builder.skip(query.skip_value)
        return builder

    def match(self, document: dict) -> 'PipelineBuilder':
        """ Add a `$match` stage; an empty filter adds nothing """
        if document:
            self.stages.append({'$match': document})
        return self

    def add_stages(self, *stages) -> 'PipelineBuilder':
        for stage in stages:
            if not isinstance(stage, dict) or len(stage) != 1:
                raise ArgumentError('A pipeline stage must be a single-key dict; got {!r}'.format(stage))
            self.stages.append(stage)
        return self

    def sort(self, order) -> 'PipelineBuilder':
        """ Add a `$sort` stage

            :param order: a list of field names, `"-field"` for descending, or a dict {field: +1|-1}
        """
        if isinstance(order, dict):
            spec = {storage_field(k, None): (-1 if v in (-1, 'desc', False) else 1) for k, v in order.items()}
        else:
            spec = {}
            for name in order:
                name, direction = _parse_sort_field(name)
                spec[storage_field(name, None)] = direction
        if spec:
            self.stages.append({'$sort': spec})
        return self

    def limit(self, n: int) -> 'PipelineBuilder':
        self.stages.append({'$limit': _non_negative_int('limit', n)})
        return self

    def skip(self, n: int) -> 'PipelineBuilder':
        self.stages.append({'$skip': _non_negative_int('skip', n)})
        return self

    def project(self, keys) -> 'PipelineBuilder':
        """ Add a `$project` stage that includes only the given fields """
        if keys:
            self.stages.append({'$project': {storage_field(k, None): 1 for k in keys}})
        return self

    def count(self, name: str = 'count') -> 'PipelineBuilder':
        """ Add a `$count` stage that replaces the documents with their number """
        self.stages.append({'$count': name})
        return self

    def build(self) -> list:
        """ Get the stages. The builder can still be used afterwards. """
        return deepcopy(self.stages)

    def __len__(self):
        return len(self.stages)

    def __repr__(self):
        return '<PipelineBuilder {}: {} stages>'.format(self.table, len(self.stages))


def _non_negative_int(name, n) -> int:
    if not isinstance(n, int) or isinstance(n, bool) or n < 0:
        raise ArgumentError('{} must be a non-negative integer; got {!r}'.format(name, n))
    return n


def _parse_sort_field(name: str):
    """ Parse a sort field: `-field` or `field-` for descending

        :return: (name, direction)
    """
    name = str(name).strip()
    if name.startswith('-'):
        return name[1:], -1
    if name.endswith('-'):
        return name[:-1], -1
    if name.startswith('+'):
        return name[1:], 1
    return name, 1


def _holds_pointers(value) -> bool:
    """ Does a filter value compare against pointers? """
    if is_parse_type(value, 'Pointer'):
        return True
    if isinstance(value, dict):
        return any(_holds_pointers(v) for k, v in value.items() if k.startswith('$'))
    if isinstance(value, list):
        return bool(value) and all(is_parse_type(v, 'Pointer') for v in value)
    return False


def aggregation_filter(where: dict) -> dict:
    """ Convert a flat filter into a `$match` document for raw records

        Pointer comparisons go to `_p_<field>` columns, system fields get their storage names,
        and dates become ISO strings.
    """
    document = {}
    for key, value in where.items():
        if key in _LOGICAL_OPERATORS:
            document[key] = [aggregation_filter(w) for w in value]
        elif key.startswith('$'):
            document[key] = encode_for_aggregation(value)
        elif _holds_pointers(value):
            document['_p_' + key] = encode_for_aggregation(value)
        else:
            document[STORAGE_FIELDS.get(key, key)] = encode_for_aggregation(value)
    return document


def linked_pointer_stages(local, through, field, comparator: str = '$eq', formatter=columnize) -> list:
    """ Compare a pointer field with a pointer on the record that another pointer leads to

        :param local: Pointer field of this record: `author`
        :param through: Pointer field that leads to the linked record: `project`
        :param field: Pointer field on the linked record: `owner`
        :param comparator: `$eq` or `$ne`
        :return: `$addFields`, `$lookup`, `$match` stages
        :raises ArgumentError: missing or invalid arguments
    """
    if not through or not field:
        raise ArgumentError('A linked pointer requires both `through` and `field`')
    if not local:
        raise ArgumentError('A linked pointer requires a local field')
    if comparator not in LINKED_POINTER_COMPARATORS:
        raise ArgumentError('A linked pointer comparator must be one of {}; got {!r}'.format(
            ', '.join(sorted(LINKED_POINTER_COMPARATORS)), comparator))

    through_column = pointer_field(through, formatter)
    target_column = pointer_field(field, formatter)
    local_column = pointer_field(local, formatter)
    target_collection = classify(through)
    alias = lookup_alias(through)

    return [
        # Object id of the linked record: the pointer without the "ClassName$" prefix
        {'$addFields': {
            through_column + '_id': {
                '$substr': ['$' + through_column, len(target_collection) + 1, -1],
            },
        }},
        {'$lookup': {
            'from': target_collection,
            'localField': through_column,
            'foreignField': '_id',
            'as': alias,
        }},
        {'$match': {
            '$expr': {
                comparator: [
                    {'$arrayElemAt': ['${}.{}'.format(alias, target_column), 0]},
                    '$' + local_column,
                ],
            },
        }},
    ]


def count_distinct_stages(field, formatter=columnize) -> list:
    """ Count the distinct values of a field """
    return [
        {'$group': {'_id': '$' + storage_field(field, formatter)}},
        {'$count': 'distinctCount'},
    ]


def distinct_stages(field, formatter=columnize) -> list:
    """ Get the distinct values of a field: one `{value: ...}` document per value """
    return [
        {'$group': {'_id': '$' + storage_field(field, formatter)}},
        {'$project': {'_id': 0, 'value': '$_id'}},
    ]
