"""
### Geo Operators

Geo queries work on GeoPoint fields. A point is given as a `GeoPoint`, its JSON form, or a `[lat, lng]` pair.

* `near`: sort by distance to a point. `[lat, lng, max_miles]` also limits the distance.
* `within_miles`, `within_kilometers`, `within_radians`: `[point, distance]`
* `within_box`: `[southwest, northeast]`
* `within_polygon`: 3 or more points
"""

from .base import OperatorBase, FilterFragment, registry
from ..exc import ArgumentError
from ..naming import columnize
from ..types import GeoPoint


def _is_number(value):
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@registry.register
class NearOperator(OperatorBase):
    tags = ('near',)
    keyword = '$nearSphere'

    def validate(self, value, settings=None):
        max_miles = None
        if isinstance(value, (list, tuple)) and len(value) == 3:
            *value, max_miles = value
            if not _is_number(max_miles):
                raise self.argument_error('max distance must be a number; got {!r}', max_miles)
        try:
            return GeoPoint.coerce(value), max_miles
        except ArgumentError as e:
            raise self.argument_error('{}', e)

    def compile(self, operand, value, formatter=columnize):
        point, max_miles = value
        condition = {'$nearSphere': point.to_json()}
        if max_miles is not None and max_miles > 0:
            condition['$maxDistanceInMiles'] = float(max_miles)
        return FilterFragment({operand: condition})


@registry.register
class WithinMilesOperator(OperatorBase):
    """ Points within a distance: `[point, distance]` """
    tags = ('within_miles',)
    keyword = '$maxDistanceInMiles'

    def validate(self, value, settings=None):
        if not isinstance(value, (list, tuple)) or len(value) != 2:
            raise self.argument_error('value must be a [point, distance] pair; got {!r}', value)
        point, distance = value
        if not _is_number(distance) or distance < 0:
            raise self.argument_error('distance must be a non-negative number; got {!r}', distance)
        try:
            return GeoPoint.coerce(point), float(distance)
        except ArgumentError as e:
            raise self.argument_error('{}', e)

    def compile(self, operand, value, formatter=columnize):
        point, distance = value
        return FilterFragment({operand: {
            '$nearSphere': point.to_json(),
            self.keyword: distance,
        }})


@registry.register
class WithinKilometersOperator(WithinMilesOperator):
    tags = ('within_kilometers',)
    keyword = '$maxDistanceInKilometers'


@registry.register
class WithinRadiansOperator(WithinMilesOperator):
    tags = ('within_radians',)
    keyword = '$maxDistanceInRadians'


class GeoPointsOperator(OperatorBase):
    """ An operator that takes a list of GeoPoints """

    #: Acceptable number of points: (min, max)
    points_count = (1, None)

    def validate(self, value, settings=None):
        if not isinstance(value, (list, tuple)):
            raise self.argument_error('value must be an array of GeoPoints; got {!r}', value)
        min_count, max_count = self.points_count
        if len(value) < min_count or (max_count is not None and len(value) > max_count):
            raise self.argument_error('got {} points; expected {}', len(value), self._describe_count())
        try:
            return tuple(GeoPoint.coerce(p) for p in value)
        except ArgumentError as e:
            raise self.argument_error('{}', e)

    def _describe_count(self):
        min_count, max_count = self.points_count
        if min_count == max_count:
            return 'exactly {}'.format(min_count)
        return '{} or more'.format(min_count)


@registry.register
class WithinBoxOperator(GeoPointsOperator):
    """ Points inside a rectangle: `[southwest, northeast]` """
    tags = ('within_box',)
    points_count = (2, 2)

    def compile(self, operand, value, formatter=columnize):
        return FilterFragment({operand: {'$within': {'$box': [p.to_json() for p in value]}}})


@registry.register
class WithinPolygonOperator(GeoPointsOperator):
    tags = ('within_polygon',)
    points_count = (3, None)

    def compile(self, operand, value, formatter=columnize):
        return FilterFragment({operand: {'$geoWithin': {'$polygon': [p.to_json() for p in value]}}})
