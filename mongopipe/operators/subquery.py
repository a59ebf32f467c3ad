"""
### Sub-query Operators

These operators take another Query as their value. The sub-query is compiled with its `className`.

* `select` (`matches_key`, `matches_key_in_query`): the field value equals the `key` of some record
    matched by the sub-query: `{field: {$select: {key: 'key', query: {...}}}}`
* `reject` (`dont_select`, `does_not_match_key`, `does_not_match_key_in_query`): the opposite, `$dontSelect`
* `in_query` (`matches`): the pointer field points to a record matched by the sub-query
* `not_in_query` (`excludes`): the opposite, `$notInQuery`
* `related_to` (`rel`): records in the `field` relation of the given object:
    `{$relatedTo: {object: pointer, key: field}}`

For `select` and `reject`, the value is either a Query (the `key` is then the same as the field name),
or a dict: `{'key': 'remote_field', 'query': Query(...)}`.
"""

from .base import OperatorBase, FilterFragment, registry
from ..naming import columnize, format_field
from ..types import Pointer, is_parse_type


def _is_query(value):
    return hasattr(value, 'compile') and hasattr(value, 'table') and hasattr(value, 'clone')


def _check_flat(operator, query):
    # A sub-query is sent as REST parameters: pipeline-only constraints can not be expressed there
    if query.requires_pipeline():
        raise operator.argument_error('the sub-query on {} has pipeline-only constraints', query.table)


def _compile_subquery(query) -> dict:
    return query.compile(encode=False, include_class_name=True)


class KeyInQueryOperator(OperatorBase):
    """ `{field: {$select: {key: 'key', query: {...}}}}` """

    def validate(self, value, settings=None):
        key = None
        if isinstance(value, dict):
            key, query = value.get('key'), value.get('query')
        else:
            query = value

        if not _is_query(query):
            raise self.argument_error(
                "value must be a Query, or a dict: {{'key': 'remote_field', 'query': Query}}; got {!r}",
                value)

        _check_flat(self, query)
        # Snapshot the sub-query: later changes to it should not affect this constraint
        return key, query.clone()

    def compile(self, operand, value, formatter=columnize):
        key, query = value
        key = operand if key is None else format_field(key, formatter)
        return FilterFragment({operand: {self.keyword: {
            'key': key,
            'query': _compile_subquery(query),
        }}})


@registry.register
class SelectOperator(KeyInQueryOperator):
    tags = ('select', 'matches_key', 'matches_key_in_query')
    keyword = '$select'


@registry.register
class RejectOperator(KeyInQueryOperator):
    tags = ('reject', 'dont_select', 'does_not_match_key', 'does_not_match_key_in_query')
    keyword = '$dontSelect'


class InQueryOperatorBase(OperatorBase):
    """ `{field: {$inQuery: {where: {...}, className: 'Class'}}}` """

    def validate(self, value, settings=None):
        if not _is_query(value):
            raise self.argument_error('value must be a Query; got {!r}', value)
        _check_flat(self, value)
        return value.clone()

    def compile(self, operand, value, formatter=columnize):
        return FilterFragment({operand: {self.keyword: _compile_subquery(value)}})


@registry.register
class InQueryOperator(InQueryOperatorBase):
    tags = ('in_query', 'matches')
    keyword = '$inQuery'


@registry.register
class NotInQueryOperator(InQueryOperatorBase):
    tags = ('not_in_query', 'excludes')
    keyword = '$notInQuery'


@registry.register
class RelatedToOperator(OperatorBase):
    """ Records that are in the `field` relation of the given object """
    tags = ('related_to', 'rel')
    keyword = '$relatedTo'

    def validate(self, value, settings=None):
        if is_parse_type(value, 'Pointer'):
            value = Pointer.from_json(value)
        if not isinstance(value, Pointer):
            raise self.argument_error('value must be a Pointer to the object that owns the relation; got {!r}', value)
        return value

    def compile(self, operand, value, formatter=columnize):
        return FilterFragment({'$relatedTo': {'object': value.to_json(), 'key': operand}})
