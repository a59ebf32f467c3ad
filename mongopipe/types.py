"""
Values that have a special representation in queries.

* `Pointer`: a reference to a record of another collection, by collection name + object id.
    It only has lookup semantics: a pointer never holds the record it points to.
* `GeoPoint`: a latitude/longitude pair.

Both are encoded as typed JSON objects (`{"__type": "Pointer", ...}`) in flat filters,
and as their raw storage values in aggregation pipelines, because the aggregation framework
works with raw documents where a pointer is kept as a `"ClassName$objectId"` string.
"""

from datetime import date, datetime, timezone

from .exc import ArgumentError
from .naming import classify

#: JSON types that are passed through untouched by constraint validators
PARSE_TYPES = frozenset(('Pointer', 'Date', 'File', 'GeoPoint', 'Bytes', 'Polygon', 'Relation'))


class Pointer:
    """ A reference to another record """

    __slots__ = ('class_name', 'object_id')

    def __init__(self, class_name: str, object_id: str):
        if not class_name or not object_id:
            raise ArgumentError('Pointer requires both a class name and an object id')
        self.class_name = str(class_name)
        self.object_id = str(object_id).strip()

    @classmethod
    def for_field(cls, field_name: str, object_id: str) -> 'Pointer':
        """ Make a pointer to the class inferred from a field name: `author` -> `Author` """
        return cls(classify(field_name), object_id)

    @classmethod
    def from_json(cls, value: dict) -> 'Pointer':
        if not is_parse_type(value, 'Pointer'):
            raise ArgumentError('Not a pointer: {!r}'.format(value))
        return cls(value['className'], value['objectId'])

    @property
    def storage_value(self) -> str:
        """ The way a pointer is stored in a `_p_<field>` column """
        return '{}${}'.format(self.class_name, self.object_id)

    def to_json(self) -> dict:
        return {'__type': 'Pointer', 'className': self.class_name, 'objectId': self.object_id}

    def __eq__(self, other):
        return isinstance(other, Pointer) and \
               (self.class_name, self.object_id) == (other.class_name, other.object_id)

    def __hash__(self):
        return hash((self.class_name, self.object_id))

    def __repr__(self):
        return 'Pointer({}#{})'.format(self.class_name, self.object_id)


class GeoPoint:
    """ A point on the globe """

    __slots__ = ('latitude', 'longitude')

    def __init__(self, latitude: float, longitude: float):
        try:
            latitude, longitude = float(latitude), float(longitude)
        except (TypeError, ValueError):
            raise ArgumentError('GeoPoint coordinates must be numbers')
        if not -90.0 <= latitude <= 90.0:
            raise ArgumentError('GeoPoint latitude must be within [-90, 90]; got {}'.format(latitude))
        if not -180.0 <= longitude <= 180.0:
            raise ArgumentError('GeoPoint longitude must be within [-180, 180]; got {}'.format(longitude))
        self.latitude = latitude
        self.longitude = longitude

    @classmethod
    def coerce(cls, value) -> 'GeoPoint':
        """ Accept a GeoPoint, a (lat, lng) pair, or its JSON form """
        if isinstance(value, GeoPoint):
            return value
        if is_parse_type(value, 'GeoPoint'):
            return cls(value['latitude'], value['longitude'])
        if isinstance(value, (list, tuple)) and len(value) == 2:
            return cls(*value)
        raise ArgumentError('Cannot interpret {!r} as a GeoPoint'.format(value))

    def to_json(self) -> dict:
        return {'__type': 'GeoPoint', 'latitude': self.latitude, 'longitude': self.longitude}

    def __eq__(self, other):
        return isinstance(other, GeoPoint) and \
               (self.latitude, self.longitude) == (other.latitude, other.longitude)

    def __hash__(self):
        return hash((self.latitude, self.longitude))

    def __repr__(self):
        return 'GeoPoint({}, {})'.format(self.latitude, self.longitude)


def is_parse_type(value, type_name: str = None) -> bool:
    """ Is `value` a typed JSON object, like `{"__type": "Pointer", ...}`? """
    if not isinstance(value, dict):
        return False
    value_type = value.get('__type')
    if type_name is None:
        return value_type in PARSE_TYPES
    return value_type == type_name


def _iso(value) -> str:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value.isoformat(timespec='milliseconds') + 'Z'
    return datetime(value.year, value.month, value.day).isoformat(timespec='milliseconds') + 'Z'


def encode_value(value):
    """ Encode a value for a flat filter document (REST API format) """
    if isinstance(value, (Pointer, GeoPoint)):
        return value.to_json()
    if isinstance(value, (datetime, date)):
        return {'__type': 'Date', 'iso': _iso(value)}
    if isinstance(value, dict):
        return {k: encode_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [encode_value(v) for v in value]
    return value


def encode_for_aggregation(value):
    """ Encode a value for an aggregation pipeline (raw document format)

        Pointers become `"ClassName$objectId"` strings, dates become ISO strings.
    """
    if isinstance(value, Pointer):
        return value.storage_value
    if isinstance(value, GeoPoint):
        return [value.longitude, value.latitude]
    if isinstance(value, (datetime, date)):
        return _iso(value)
    if isinstance(value, dict):
        if is_parse_type(value, 'Pointer'):
            return Pointer.from_json(value).storage_value
        if is_parse_type(value, 'Date'):
            return value['iso']
        return {k: encode_for_aggregation(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [encode_for_aggregation(v) for v in value]
    return value


def object_id_of(value):
    """ Get the object id out of a Pointer, its JSON form, or a plain id string """
    if isinstance(value, Pointer):
        return value.object_id
    if is_parse_type(value, 'Pointer'):
        return value.get('objectId')
    return value


def is_pointer_like(value) -> bool:
    return isinstance(value, Pointer) or is_parse_type(value, 'Pointer')
