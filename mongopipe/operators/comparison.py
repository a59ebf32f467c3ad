"""
### Comparison Operators

These operators compile into a flat filter fragment under the field key:

* `eq`: `{field: value}`. A shortcut; equality has no operator key.
* `ne` (`not`): `{field: {$ne: value}}`
* `lt` (`less_than`, `before`), `lte` (`less_than_or_equal`, `on_or_before`)
* `gt` (`greater_than`, `after`), `gte` (`greater_than_or_equal`, `on_or_after`)
* `between`, `between_dates`: `[min, max]` gives `{field: {$gte: min, $lte: max}}`
* `in` (`contained_in`, `any`), `nin` (`not_in`, `not_contained_in`, `none`): scalar values are wrapped into a list
* `all` (`contains_all`, `superset_of`): the array field contains every value
* `exists`: `{field: {$exists: bool}}`
* `null`: `true` means the field is not set, `false` means it is not `null`
* `empty`: `{"field.0": {$exists: !bool}}`, for array fields
* `id`: match a pointer field by the object id alone: the class is inferred from the field name
"""

from .base import OperatorBase, FilterFragment, registry
from ..naming import columnize
from ..types import Pointer, encode_value, is_parse_type


def _is_array(value):
    return isinstance(value, (list, tuple, set, frozenset))


def _as_list(value) -> list:
    """ Wrap a scalar into a list; `None` becomes an empty list """
    if _is_array(value):
        return list(value)
    return [] if value is None else [value]


class ComparisonOperator(OperatorBase):
    """ `{field: {$op: value}}` """


@registry.register
class EqualOperator(OperatorBase):
    tags = ('eq',)
    keyword = '$eq'

    def compile(self, operand, value, formatter=columnize):
        return FilterFragment({operand: encode_value(value)})


@registry.register
class NotEqualOperator(ComparisonOperator):
    tags = ('ne', 'not')
    keyword = '$ne'


@registry.register
class LessThanOperator(ComparisonOperator):
    tags = ('lt', 'less_than', 'before')
    keyword = '$lt'


@registry.register
class LessThanOrEqualOperator(ComparisonOperator):
    tags = ('lte', 'less_than_or_equal', 'on_or_before')
    keyword = '$lte'


@registry.register
class GreaterThanOperator(ComparisonOperator):
    tags = ('gt', 'greater_than', 'after')
    keyword = '$gt'


@registry.register
class GreaterThanOrEqualOperator(ComparisonOperator):
    tags = ('gte', 'greater_than_or_equal', 'on_or_after')
    keyword = '$gte'


@registry.register
class BetweenOperator(OperatorBase):
    """ Inclusive range: `[min, max]` """
    tags = ('between',)

    #: Name the bounds in error messages
    _bounds = '[min_value, max_value]'

    def validate(self, value, settings=None):
        if not isinstance(value, (list, tuple)) or len(value) != 2:
            raise self.argument_error('value must be an array with exactly 2 elements {}; got {!r}',
                                      self._bounds, value)
        return tuple(value)

    def compile(self, operand, value, formatter=columnize):
        lower, upper = value
        return FilterFragment({operand: {
            '$gte': encode_value(lower),
            '$lte': encode_value(upper),
        }})


@registry.register
class BetweenDatesOperator(BetweenOperator):
    tags = ('between_dates',)
    _bounds = '[start_date, end_date]'


class ListOperator(OperatorBase):
    """ An operator that wants a list of values: a scalar is wrapped """

    def validate(self, value, settings=None):
        return tuple(_as_list(value))

    def compile(self, operand, value, formatter=columnize):
        return FilterFragment({operand: {self.keyword: encode_value(list(value))}})


@registry.register
class InOperator(ListOperator):
    tags = ('in', 'contained_in', 'any')
    keyword = '$in'


@registry.register
class NotInOperator(ListOperator):
    tags = ('nin', 'not_in', 'not_contained_in', 'none')
    keyword = '$nin'


@registry.register
class AllOperator(ListOperator):
    tags = ('all', 'contains_all', 'superset_of')
    keyword = '$all'


class BooleanOperator(OperatorBase):
    """ An operator that only accepts `True` or `False` """

    def validate(self, value, settings=None):
        if value is not True and value is not False:
            raise self.argument_error('value must be either `true` or `false`; got {!r}', value)
        return value


@registry.register
class ExistsOperator(BooleanOperator):
    tags = ('exists',)
    keyword = '$exists'


@registry.register
class NullOperator(BooleanOperator):
    tags = ('null',)

    def compile(self, operand, value, formatter=columnize):
        # null=true: the field is not set at all
        if value:
            return FilterFragment({operand: {'$exists': False}})
        # null=false: `{$exists: true}` misbehaves with geo queries, so check for `!= null`
        else:
            return FilterFragment({operand: {'$ne': None}})


@registry.register
class EmptyOperator(BooleanOperator):
    tags = ('empty',)

    def compile(self, operand, value, formatter=columnize):
        return FilterFragment({operand + '.0': {'$exists': not value}})


@registry.register
class ObjectIdOperator(OperatorBase):
    """ Match a pointer field by object id

        The target class is inferred from the field name: `author` points to `Author`.
    """
    tags = ('id',)

    def validate(self, value, settings=None):
        if isinstance(value, Pointer):
            return value
        if is_parse_type(value, 'Pointer'):
            return Pointer.from_json(value)
        if not isinstance(value, str) or not value.strip():
            raise self.argument_error('value must be a string with an object id; got {!r}', value)
        return value.strip()

    def compile(self, operand, value, formatter=columnize):
        if not isinstance(value, Pointer):
            value = Pointer.for_field(operand, value)
        return FilterFragment({operand: value.to_json()})
