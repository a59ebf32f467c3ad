"""
### Constraints

A `Constraint` is a single condition: (field, operator, value).

```python
Constraint('age', 'gte', 18).compile()
# -> FilterFragment({'age': {'$gte': 18}})
```

Constraints are immutable: the value is validated once, when the constraint is created,
and can't be changed afterwards. Malformed values fail early, with an `ArgumentError`.

A `CompoundConstraint` joins groups of constraints with `$or` or `$and`.
Each group is compiled into a flat filter of its own.
"""

from .exc import ArgumentError
from .naming import columnize, format_field
from .operators import registry as default_registry
from .operators.base import FilterFragment


class Constraint:
    """ A condition on a field

        :param operand: Field name. It's normalized with the field formatter.
        :param operator: Operator tag, e.g. 'gt'
        :param value: The value to compare the field to
        :param settings: Query settings; provides the field formatter
        :param registry: Operator registry to look the operator up in
        :raises InvalidOperatorError: unknown operator
        :raises ArgumentError: invalid value for this operator
    """

    __slots__ = ('operand', 'operator', 'value', 'strategy', 'formatter')

    def __init__(self, operand, operator='eq', value=None, settings=None, registry=None):
        formatter = settings['field_formatter'] if settings else columnize
        strategy = (registry or default_registry).get(operator)

        if operand is None or not str(operand).strip():
            raise ArgumentError('{}: field name must not be empty'.format(operator))

        set_ = super(Constraint, self).__setattr__
        set_('formatter', formatter)
        set_('strategy', strategy)
        set_('operand', format_field(operand, formatter))
        set_('operator', strategy.name)
        set_('value', strategy.validate(value, settings))

    def __setattr__(self, name, value):
        raise AttributeError('Constraint is immutable')

    def __delattr__(self, name):
        raise AttributeError('Constraint is immutable')

    @property
    def requires_pipeline(self) -> bool:
        return self.strategy.pipeline_only

    def compile(self):
        """ Compile the constraint

            :rtype: FilterFragment | PipelineFragment
        """
        return self.strategy.compile(self.operand, self.value, self.formatter)

    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        # Immutable; sub-queries in the value are snapshots already
        return self

    def __eq__(self, other):
        return isinstance(other, Constraint) and \
               (self.operand, self.operator, self.value) == (other.operand, other.operator, other.value)

    def __hash__(self):
        return hash((self.operand, self.operator, repr(self.value)))

    def __repr__(self):
        return 'Constraint({} {} {!r})'.format(self.operand, self.operator, self.value)


class CompoundConstraint:
    """ Groups of constraints, joined with `$or` or `$and`

        Every group is a list of constraints ANDed together.
        Groups with pipeline-only constraints are not supported: a pipeline can't be put into `$or`.
    """

    __slots__ = ('combinator', 'groups')

    COMBINATORS = {'or': '$or', 'and': '$and'}

    def __init__(self, combinator: str, groups):
        if combinator not in self.COMBINATORS:
            raise ArgumentError('Combinator must be one of: {}; got {!r}'.format(
                ', '.join(self.COMBINATORS), combinator))

        groups = tuple(tuple(group) for group in groups if group)
        for group in groups:
            for constraint in group:
                if not isinstance(constraint, (Constraint, CompoundConstraint)):
                    raise ArgumentError('Not a constraint: {!r}'.format(constraint))
                if constraint.requires_pipeline:
                    raise ArgumentError('{}: pipeline-only constraints can not be combined with ${}'.format(
                        constraint.operator, combinator))

        super(CompoundConstraint, self).__setattr__('combinator', combinator)
        super(CompoundConstraint, self).__setattr__('groups', groups)

    def __setattr__(self, name, value):
        raise AttributeError('CompoundConstraint is immutable')

    @property
    def operator(self) -> str:
        return self.combinator

    @property
    def requires_pipeline(self) -> bool:
        return False

    def compile(self) -> FilterFragment:
        """ Compile: `{$or: [{...}, {...}]}` """
        branches = [compile_filter(group) for group in self.groups]
        branches = [b for b in branches if b]
        if not branches:
            return FilterFragment({})
        return FilterFragment({self.COMBINATORS[self.combinator]: branches})

    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self

    def __eq__(self, other):
        return isinstance(other, CompoundConstraint) and \
               (self.combinator, self.groups) == (other.combinator, other.groups)

    def __hash__(self):
        return hash((self.combinator, self.groups))

    def __repr__(self):
        return 'CompoundConstraint({}: {!r})'.format(self.combinator, list(self.groups))


def _is_operator_dict(value) -> bool:
    return isinstance(value, dict) and bool(value) and all(str(k).startswith('$') for k in value)


def merge_filter(document: dict, fragment: dict) -> dict:
    """ Merge a filter fragment into a filter document. Both conditions have to hold.

        Conditions on the same field are merged: `{age: {$gt: 1}}` + `{age: {$lt: 5}}` -> `{age: {$gt: 1, $lt: 5}}`.
        When they can't be merged (same operator twice, equality + operator, two `$or`s),
        the new condition goes into `$and`.
    """
    for key, value in fragment.items():
        if key not in document:
            document[key] = value
        elif key == '$and':
            document['$and'] = list(document['$and']) + list(value)
        elif _is_operator_dict(document[key]) and _is_operator_dict(value) \
                and not set(document[key]) & set(value):
            document[key] = dict(document[key], **value)
        else:
            document.setdefault('$and', []).append({key: value})
    return document


def compile_filter(constraints) -> dict:
    """ Compile a list of flat constraints into a filter document """
    document = {}
    for constraint in constraints:
        fragment = constraint.compile()
        if fragment.requires_pipeline:
            raise ArgumentError('{}: a pipeline-only constraint can not be compiled into a filter'.format(
                constraint.operator))
        merge_filter(document, fragment.document)
    return document
