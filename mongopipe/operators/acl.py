"""
### ACL Operators

Filter records by their permissions. These operators work on the denormalized `_rperm`/`_wperm` arrays,
which are only visible to aggregation pipelines: a query that uses them is compiled as a pipeline.
The operand (field name) is ignored; use any, e.g. `ACL`.

* `readable_by`, `writable_by` (`writeable_by`): records that any of the given subjects can read / write.
    Value: a subject, or a list of them. A subject is a user id, a Pointer to a user, `"role:<name>"`, or `"public"`.
    Public records are always matched, and so are records that have no permissions array at all.
    `"none"` or an empty list: records that nobody can read / write.
* `readable_by_role`, `writable_by_role`: same, but the value is a role name, or a list of them
* `not_readable_by`, `not_writable_by` (`not_writeable_by`): records that none of the subjects can read / write
* `private_acl` (`master_key_only`): `True`: records that nobody can access; `False`: records that somebody can
"""

from .base import PipelineOperatorBase, registry
from .comparison import BooleanOperator
from ..acl import READ_FIELD, WRITE_FIELD, acl_filter, permission_keys, role_key
from ..exc import ArgumentError
from ..naming import columnize


class AclOperatorBase(PipelineOperatorBase):
    """ Filter by one of the permission arrays """

    #: Permission array: `_rperm` or `_wperm`
    field = None

    def validate(self, value, settings=None):
        try:
            return tuple(permission_keys(value))
        except ArgumentError as e:
            raise self.argument_error('{}', e)


@registry.register
class ReadableByOperator(AclOperatorBase):
    tags = ('readable_by',)
    field = READ_FIELD

    def compile_stages(self, operand, value, formatter=columnize):
        return [{'$match': acl_filter(self.field, value)}]


@registry.register
class WritableByOperator(ReadableByOperator):
    tags = ('writable_by', 'writeable_by')
    field = WRITE_FIELD


@registry.register
class ReadableByRoleOperator(ReadableByOperator):
    tags = ('readable_by_role',)

    def validate(self, value, settings=None):
        names = value if isinstance(value, (list, tuple, set, frozenset)) else [value]
        if not names:
            raise self.argument_error('at least one role name is required')
        try:
            return tuple(role_key(name) for name in names)
        except ArgumentError as e:
            raise self.argument_error('{}', e)


@registry.register
class WritableByRoleOperator(ReadableByRoleOperator):
    tags = ('writable_by_role', 'writeable_by_role')
    field = WRITE_FIELD


@registry.register
class NotReadableByOperator(AclOperatorBase):
    tags = ('not_readable_by',)
    field = READ_FIELD

    def compile_stages(self, operand, value, formatter=columnize):
        # Nobody to exclude
        if not value:
            return []
        return [{'$match': {self.field: {'$nin': list(value)}}}]


@registry.register
class NotWritableByOperator(NotReadableByOperator):
    tags = ('not_writable_by', 'not_writeable_by')
    field = WRITE_FIELD


@registry.register
class PrivateAclOperator(BooleanOperator, PipelineOperatorBase):
    tags = ('private_acl', 'master_key_only')

    def compile_stages(self, operand, value, formatter=columnize):
        if value:
            return [{'$match': {'$and': [
                {'$or': [
                    {field: {'$exists': True, '$eq': []}},
                    {field: {'$exists': False}},
                ]}
                for field in (READ_FIELD, WRITE_FIELD)
            ]}}]
        else:
            return [{'$match': {'$or': [
                {field: {'$exists': True, '$ne': []}}
                for field in (READ_FIELD, WRITE_FIELD)
            ]}}]
