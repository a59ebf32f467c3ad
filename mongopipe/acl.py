"""
### Access Control Lists

Every record carries an ACL: a mapping of subjects to read/write permissions.
A subject is one of:

* `"*"`: the public. `"public"` is accepted as an alias.
* a user: by object id, or a Pointer to the user
* a role: `"role:<name>"`

```python
acl = ACL()
acl.everyone(read=True, write=False)
acl.apply(Pointer('_User', 'u1'), read=True, write=True)
acl.apply_role('admin', read=True, write=True)

acl.as_json()
# -> {'*': {'read': True, 'write': False},
#     'u1': {'read': True, 'write': True},
#     'role:admin': {'read': True, 'write': True}}
```

A subject that has neither permission is omitted from the serialized form.

In storage, the ACL is denormalized into two arrays: `_rperm` and `_wperm`.
Records created before ACLs were introduced have neither, and are treated as public:
that's why every ACL filter built by `acl_filter()` also matches records where the
permission array is `null` or missing.
"""

from .exc import ArgumentError
from .types import Pointer, is_parse_type


#: The public subject
PUBLIC = '*'

#: Prefix of role subjects
ROLE_PREFIX = 'role:'

#: Storage columns for read and write permissions
READ_FIELD = '_rperm'
WRITE_FIELD = '_wperm'


class Permission:
    """ Read and write permission of a subject """

    __slots__ = ('read', 'write')

    def __init__(self, read: bool = False, write: bool = False):
        self.read = bool(read)
        self.write = bool(write)

    @classmethod
    def from_json(cls, value) -> 'Permission':
        if isinstance(value, Permission):
            return cls(value.read, value.write)
        if not isinstance(value, dict):
            raise ArgumentError('Permission must be an object with `read` and `write` keys; got {!r}'.format(value))
        return cls(value.get('read', False), value.get('write', False))

    def __bool__(self):
        return self.read or self.write

    def as_json(self) -> dict:
        return {'read': self.read, 'write': self.write}

    def __eq__(self, other):
        return isinstance(other, Permission) and (self.read, self.write) == (other.read, other.write)

    def __repr__(self):
        return 'Permission(read={}, write={})'.format(self.read, self.write)


def normalize_subject(subject) -> str:
    """ Convert a subject to its ACL key

        :raises ArgumentError: not a valid subject
    """
    if isinstance(subject, Pointer):
        return subject.object_id
    if is_parse_type(subject, 'Pointer'):
        return Pointer.from_json(subject).object_id
    if not isinstance(subject, str) or not subject.strip():
        raise ArgumentError('ACL subject must be an object id, a role, or "public"; got {!r}'.format(subject))

    subject = subject.strip()
    if subject in ('public', PUBLIC):
        return PUBLIC
    return subject


def role_key(name) -> str:
    """ ACL key of a role: always prefixed with `role:` """
    name = str(name).strip()
    if name.startswith(ROLE_PREFIX):
        name = name[len(ROLE_PREFIX):]
    if not name:
        raise ArgumentError('Role name must not be empty')
    return ROLE_PREFIX + name


class ACL:
    """ Access Control List: {subject: Permission} """

    def __init__(self, acl: dict = None):
        self.permissions = {}

        if isinstance(acl, ACL):
            acl = acl.as_json()
        if acl:
            for subject, permission in acl.items():
                self.apply(subject, Permission.from_json(permission))

    @classmethod
    def from_json(cls, value: dict) -> 'ACL':
        return cls(value)

    @classmethod
    def public(cls, read: bool = True, write: bool = True) -> 'ACL':
        """ An ACL that lets everyone in """
        acl = cls()
        acl.everyone(read, write)
        return acl

    def apply(self, subject, read=False, write=False) -> 'ACL':
        """ Set the permissions of a subject

            :param subject: User id, Pointer to a user, `"role:<name>"`, or `"public"`
            :param read: Read permission, or a `Permission` object
            :param write: Write permission
        """
        key = normalize_subject(subject)
        permission = read if isinstance(read, Permission) else Permission(read, write)
        self.permissions[key] = permission
        return self

    def apply_role(self, name, read=False, write=False) -> 'ACL':
        """ Set the permissions of a role """
        return self.apply(role_key(name), read, write)

    def everyone(self, read=True, write=True) -> 'ACL':
        """ Set public permissions """
        return self.apply(PUBLIC, read, write)

    def delete(self, subject):
        """ Remove a subject from the ACL """
        self.permissions.pop(normalize_subject(subject), None)

    def permission(self, subject) -> Permission:
        """ Get the permission of a subject (no permissions if not listed) """
        return self.permissions.get(normalize_subject(subject), Permission())

    # region Bulk changes

    def master_key_only(self):
        """ Remove all permissions: only the master key will be able to access the record """
        self.permissions = {}

    def all_read(self):
        for permission in self.permissions.values():
            permission.read = True

    def all_write(self):
        for permission in self.permissions.values():
            permission.write = True

    def no_read(self):
        for permission in self.permissions.values():
            permission.read = False

    def no_write(self):
        for permission in self.permissions.values():
            permission.write = False

    # endregion

    # region Inspection

    def readable_by(self) -> list:
        """ Subjects that can read """
        return [k for k, p in self.permissions.items() if p.read]

    def writable_by(self) -> list:
        """ Subjects that can write """
        return [k for k, p in self.permissions.items() if p.write]

    def owners(self) -> list:
        """ Subjects that can both read and write """
        return [k for k, p in self.permissions.items() if p.read and p.write]

    def can_read(self, *subjects) -> bool:
        """ Can any of the subjects read? """
        return any(self.permission(s).read for s in subjects)

    def can_write(self, *subjects) -> bool:
        """ Can any of the subjects write? """
        return any(self.permission(s).write for s in subjects)

    @property
    def public_read(self) -> bool:
        return self.permission(PUBLIC).read

    @property
    def public_write(self) -> bool:
        return self.permission(PUBLIC).write

    def is_empty(self) -> bool:
        """ No subject has any permission: a master-key-only record """
        return not any(self.permissions.values())

    # endregion

    def as_json(self) -> dict:
        """ Serialize; subjects with no permissions are left out """
        return {
            subject: permission.as_json()
            for subject, permission in self.permissions.items()
            if permission
        }

    def to_permission_keys(self) -> dict:
        """ The denormalized form, as stored: `{'_rperm': [...], '_wperm': [...]}` """
        return {
            READ_FIELD: self.readable_by(),
            WRITE_FIELD: self.writable_by(),
        }

    def __eq__(self, other):
        if isinstance(other, dict):
            other = ACL(other)
        return isinstance(other, ACL) and self.as_json() == other.as_json()

    def __repr__(self):
        return 'ACL({!r})'.format(self.as_json())


def permission_keys(subjects) -> list:
    """ Normalize a subject, or a list of them, into a list of unique ACL keys

        `"none"` gives an empty list.
    """
    if subjects is None or subjects == 'none':
        return []
    if not isinstance(subjects, (list, tuple, set, frozenset)):
        subjects = [subjects]

    keys = []
    for subject in subjects:
        if subject == 'none':
            continue
        key = normalize_subject(subject)
        if key not in keys:
            keys.append(key)
    return keys


def acl_filter(field: str, keys) -> dict:
    """ A filter that matches records whose `field` permission array grants access to any of the `keys`

        The public key is always included.
        Records that have no permission array at all (`null` or missing) are matched as public.
        An empty list of keys matches records with no permissions in `field`.
    """
    keys = list(keys)
    if not keys:
        return {'$or': [
            {field: {'$exists': True, '$eq': []}},
            {field: {'$exists': False}},
        ]}

    if PUBLIC not in keys:
        keys.append(PUBLIC)
    return {'$or': [
        {field: {'$in': keys}},
        {field: None},
        {field: {'$exists': False}},
    ]}
