"""
Field and collection naming.

Application code speaks snake_case (`created_at`, `author`), while the backend stores
lowerCamelCase columns (`createdAt`), keeps pointers in prefixed columns (`_p_author`),
and names collections in CamelCase (`Project`, `_User`).

Every name that ends up in a filter document or in a pipeline goes through one of these
functions, so that the same field is always spelled the same way.
"""

import inflection


#: Collections of the built-in system classes
SYSTEM_CLASSES = {
    'User': '_User',
    'Role': '_Role',
    'Session': '_Session',
    'Installation': '_Installation',
    'Audience': '_Audience',
    'PushStatus': '_PushStatus',
}

#: Fields that have a special name in the storage layer (used within pipelines)
STORAGE_FIELDS = {
    'objectId': '_id',
    'createdAt': '_created_at',
    'updatedAt': '_updated_at',
}

#: Fields that are renamed before columnizing
_FIELD_ALIASES = {
    'id': 'objectId',
    'object_id': 'objectId',
}


def columnize(name) -> str:
    """ Convert a field name to its column name: lowerCamelCase

        Names that start with an underscore are internal and are kept as is.
        Dot-notation is supported: every segment is converted separately.

        >>> columnize('created_at')
        'createdAt'
        >>> columnize('address.zip_code')
        'address.zipCode'
    """
    name = str(name).strip()
    if not name or name.startswith('_'):
        return name
    return '.'.join(_columnize_segment(segment) for segment in name.split('.'))


def _columnize_segment(segment: str) -> str:
    if segment in _FIELD_ALIASES:
        return _FIELD_ALIASES[segment]
    if segment.startswith('_'):
        return segment
    return inflection.camelize(segment, uppercase_first_letter=False)


def format_field(name, formatter=columnize) -> str:
    """ Format a field name with the given formatter

        :param formatter: The formatter to use, or `None` to leave names untouched
    """
    name = str(name).strip()
    if formatter is None:
        return name
    return formatter(name)


def pointer_field(name, formatter=columnize) -> str:
    """ Storage column of a pointer field: `author` -> `_p_author` """
    return '_p_' + format_field(name, formatter)


def storage_field(name, formatter=columnize) -> str:
    """ Column name as seen by the aggregation framework

        Aggregation pipelines work on the raw documents, where a few fields are renamed:
        `objectId` is `_id`, `createdAt` is `_created_at`, etc.
    """
    column = format_field(name, formatter)
    return STORAGE_FIELDS.get(column, column)


def classify(name) -> str:
    """ Collection name for a class or a pointer field name

        >>> classify('project')
        'Project'
        >>> classify('users')
        '_User'
    """
    name = str(name).strip()
    if name.startswith('_'):
        return name
    class_name = inflection.camelize(inflection.singularize(inflection.underscore(name)))
    return SYSTEM_CLASSES.get(class_name, class_name)


def lookup_alias(name) -> str:
    """ Name of the array a `$lookup` stores joined documents into: `project` -> `project_data` """
    return '{}_data'.format(inflection.camelize(str(name).strip(), uppercase_first_letter=False))
