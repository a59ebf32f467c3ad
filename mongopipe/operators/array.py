"""
### Array Operators

These operators can not be expressed as a flat filter: they compile into a `$match` stage
of an aggregation pipeline. A Query that uses any of them is compiled as a pipeline.

* `size`: an integer, or a dict of comparisons: `{'gte': 1, 'lt': 5}`
* `arr_empty`, `arr_nempty`: the array is empty / has elements
* `empty_or_nil`, `not_empty`: like the above, but also treat a missing or `null` field as empty
* `set_equals`, `not_set_equals`: same elements, in any order
* `eq_array`, `neq`: exact array (in)equality, order matters
* `subset_of`: every element of the field is in the given list
* `first`, `last`: the first / last element equals the value
* `elem_match`: some element matches all the given criteria

When the values are Pointers, arrays of pointers are compared by object ids:
the field is mapped with `{$map: {input: '$field', as: 'p', in: '$$p.objectId'}}`.
"""

from .base import PipelineOperatorBase, registry
from .comparison import BooleanOperator, _as_list
from ..naming import columnize
from ..types import encode_for_aggregation, encode_value, is_pointer_like, object_id_of


def _match_expr(expr) -> list:
    return [{'$match': {'$expr': expr}}]


def _size_of(operand) -> dict:
    """ Size of an array field; a missing field has size 0 """
    return {'$size': {'$ifNull': ['$' + operand, []]}}


def _object_ids_of(operand) -> dict:
    return {'$map': {'input': '$' + operand, 'as': 'p', 'in': '$$p.objectId'}}


@registry.register
class SizeOperator(PipelineOperatorBase):
    tags = ('size',)

    #: Comparisons allowed in a dict value
    COMPARISON_OPERATORS = {
        'gt': '$gt',
        'gte': '$gte',
        'lt': '$lt',
        'lte': '$lte',
        'ne': '$ne',
        'eq': '$eq',
    }

    @staticmethod
    def _is_size(value):
        return isinstance(value, int) and not isinstance(value, bool) and value >= 0

    def validate(self, value, settings=None):
        if isinstance(value, dict):
            if not value:
                raise self.argument_error('at least one comparison is required')
            for op, size in value.items():
                if op not in self.COMPARISON_OPERATORS:
                    raise self.argument_error('unknown comparison {!r}; valid: {}',
                                              op, ', '.join(self.COMPARISON_OPERATORS))
                if not self._is_size(size):
                    raise self.argument_error('value for {!r} must be a non-negative integer; got {!r}', op, size)
            return dict(value)
        if not self._is_size(value):
            raise self.argument_error('value must be a non-negative integer, '
                                      'or a dict of comparisons (gt, gte, lt, lte, ne, eq); got {!r}', value)
        return value

    def compile_stages(self, operand, value, formatter=columnize):
        size = _size_of(operand)
        if not isinstance(value, dict):
            return _match_expr({'$eq': [size, value]})

        conditions = [{self.COMPARISON_OPERATORS[op]: [size, n]} for op, n in value.items()]
        return _match_expr(conditions[0] if len(conditions) == 1 else {'$and': conditions})


class ArrayBooleanOperator(BooleanOperator, PipelineOperatorBase):
    """ An array check that takes `True` or `False` """


@registry.register
class ArrayEmptyOperator(ArrayBooleanOperator):
    tags = ('arr_empty',)

    def compile_stages(self, operand, value, formatter=columnize):
        if value:
            return [{'$match': {operand: []}}]
        else:
            return [{'$match': {operand: {'$ne': []}}}]


@registry.register
class ArrayNotEmptyOperator(ArrayBooleanOperator):
    tags = ('arr_nempty',)

    def compile_stages(self, operand, value, formatter=columnize):
        size = _size_of(operand)
        return _match_expr({'$gt': [size, 0]} if value else {'$eq': [size, 0]})


def _empty_or_missing(operand) -> dict:
    return {'$or': [
        {operand: {'$exists': True, '$eq': []}},
        {operand: {'$exists': False}},
        {operand: {'$eq': None}},
    ]}


def _has_elements(operand) -> dict:
    return {'$and': [
        {operand: {'$exists': True}},
        {operand: {'$ne': None}},
        {operand: {'$ne': []}},
    ]}


@registry.register
class ArrayEmptyOrNilOperator(ArrayBooleanOperator):
    tags = ('empty_or_nil',)

    def compile_stages(self, operand, value, formatter=columnize):
        return [{'$match': _empty_or_missing(operand) if value else _has_elements(operand)}]


@registry.register
class ArrayNotEmptyOrNilOperator(ArrayBooleanOperator):
    tags = ('not_empty',)

    def compile_stages(self, operand, value, formatter=columnize):
        return [{'$match': _has_elements(operand) if value else _empty_or_missing(operand)}]


class ArrayComparisonOperator(PipelineOperatorBase):
    """ Compare the whole array field to a list of values with an aggregation expression

        Example: `{$setEquals: ['$field', [1, 2, 3]]}`
    """

    #: Aggregation expression operator
    expression = None

    #: Wrap the expression into `$not`?
    negate = False

    def validate(self, value, settings=None):
        values = _as_list(value)
        if any(is_pointer_like(v) for v in values):
            ids = [object_id_of(v) for v in values]
            if any(not i for i in ids):
                raise self.argument_error('cannot compare against records without an object id')
            # Store as ('ids', values) to compare by object ids
            return 'ids', tuple(ids)
        return 'values', tuple(values)

    def compile_stages(self, operand, value, formatter=columnize):
        kind, values = value
        if kind == 'ids':
            expr = {self.expression: [_object_ids_of(operand), list(values)]}
        else:
            expr = {self.expression: ['$' + operand, encode_for_aggregation(list(values))]}

        if self.negate:
            expr = {'$not': expr}
        return _match_expr(expr)


@registry.register
class SetEqualsOperator(ArrayComparisonOperator):
    tags = ('set_equals',)
    expression = '$setEquals'


@registry.register
class NotSetEqualsOperator(ArrayComparisonOperator):
    tags = ('not_set_equals',)
    expression = '$setEquals'
    negate = True


@registry.register
class ArrayEqualOperator(ArrayComparisonOperator):
    tags = ('eq_array',)
    expression = '$eq'


@registry.register
class ArrayNotEqualOperator(ArrayComparisonOperator):
    tags = ('neq',)
    expression = '$ne'


@registry.register
class SubsetOfOperator(ArrayComparisonOperator):
    tags = ('subset_of',)
    expression = '$setIsSubset'


class ArrayElementOperator(PipelineOperatorBase):
    """ Compare one element of the array, by its position """

    #: Element position; negative counts from the end
    index = None

    def validate(self, value, settings=None):
        if is_pointer_like(value):
            object_id = object_id_of(value)
            if not object_id:
                raise self.argument_error('cannot compare against a record without an object id')
            return 'ids', object_id
        return 'values', value

    def compile_stages(self, operand, value, formatter=columnize):
        kind, value = value
        if kind == 'ids':
            element = {'$arrayElemAt': [_object_ids_of(operand), self.index]}
        else:
            element = {'$arrayElemAt': ['$' + operand, self.index]}
            value = encode_for_aggregation(value)
        return _match_expr({'$eq': [element, value]})


@registry.register
class ArrayFirstOperator(ArrayElementOperator):
    tags = ('first',)
    index = 0


@registry.register
class ArrayLastOperator(ArrayElementOperator):
    tags = ('last',)
    index = -1


@registry.register
class ElemMatchOperator(PipelineOperatorBase):
    tags = ('elem_match',)

    def validate(self, value, settings=None):
        if not isinstance(value, dict):
            raise self.argument_error('value must be a dict of criteria for element matching; got {!r}', value)
        return dict(value)

    def compile_stages(self, operand, value, formatter=columnize):
        return [{'$match': {operand: {'$elemMatch': encode_value(value)}}}]
