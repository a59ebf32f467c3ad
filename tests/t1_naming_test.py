import unittest
from datetime import date, datetime, timezone, timedelta

from mongopipe import Pointer, GeoPoint, QuerySettingsDict, ArgumentError
from mongopipe.naming import columnize, format_field, pointer_field, storage_field, classify, lookup_alias
from mongopipe.types import encode_value, encode_for_aggregation, object_id_of, is_parse_type


class NamingTest(unittest.TestCase):
    """ Test field & collection naming """

    def test_columnize(self):
        self.assertEqual(columnize('created_at'), 'createdAt')
        self.assertEqual(columnize('title'), 'title')
        self.assertEqual(columnize('playCount'), 'playCount')
        self.assertEqual(columnize('address.zip_code'), 'address.zipCode')

        # Aliases
        self.assertEqual(columnize('id'), 'objectId')
        self.assertEqual(columnize('object_id'), 'objectId')

        # Internal names are kept as is
        self.assertEqual(columnize('_rperm'), '_rperm')
        self.assertEqual(columnize('_p_author'), '_p_author')

    def test_format_field(self):
        self.assertEqual(format_field('created_at'), 'createdAt')
        self.assertEqual(format_field(' created_at '), 'createdAt')
        # No formatter: untouched
        self.assertEqual(format_field('created_at', None), 'created_at')
        # Custom formatter
        self.assertEqual(format_field('title', str.upper), 'TITLE')

    def test_pointer_and_storage_fields(self):
        self.assertEqual(pointer_field('author'), '_p_author')
        self.assertEqual(pointer_field('parent_post'), '_p_parentPost')

        self.assertEqual(storage_field('created_at'), '_created_at')
        self.assertEqual(storage_field('updated_at'), '_updated_at')
        self.assertEqual(storage_field('id'), '_id')
        self.assertEqual(storage_field('object_id'), '_id')
        self.assertEqual(storage_field('title'), 'title')

    def test_classify(self):
        self.assertEqual(classify('project'), 'Project')
        self.assertEqual(classify('projects'), 'Project')
        self.assertEqual(classify('blog_post'), 'BlogPost')

        # System classes
        self.assertEqual(classify('user'), '_User')
        self.assertEqual(classify('users'), '_User')
        self.assertEqual(classify('role'), '_Role')
        self.assertEqual(classify('session'), '_Session')
        self.assertEqual(classify('installation'), '_Installation')

        # Already a collection name
        self.assertEqual(classify('_User'), '_User')

    def test_lookup_alias(self):
        self.assertEqual(lookup_alias('project'), 'project_data')
        self.assertEqual(lookup_alias('parent_post'), 'parentPost_data')


class TypesTest(unittest.TestCase):
    """ Test Pointer, GeoPoint, value encoding """

    def test_pointer(self):
        p = Pointer('Project', 'p1')
        self.assertEqual(p.to_json(), {'__type': 'Pointer', 'className': 'Project', 'objectId': 'p1'})
        self.assertEqual(p.storage_value, 'Project$p1')
        self.assertEqual(Pointer.from_json(p.to_json()), p)
        self.assertEqual(Pointer.for_field('author', 'a1'), Pointer('Author', 'a1'))
        self.assertEqual(Pointer.for_field('user', 'u1'), Pointer('_User', 'u1'))

        # Hashable
        self.assertEqual(len({Pointer('A', '1'), Pointer('A', '1'), Pointer('A', '2')}), 2)

        # Invalid
        with self.assertRaises(ArgumentError):
            Pointer('', 'p1')
        with self.assertRaises(ArgumentError):
            Pointer('Project', None)
        with self.assertRaises(ArgumentError):
            Pointer.from_json({'__type': 'GeoPoint'})

    def test_geopoint(self):
        g = GeoPoint(40.0, -30.5)
        self.assertEqual(g.to_json(), {'__type': 'GeoPoint', 'latitude': 40.0, 'longitude': -30.5})
        self.assertEqual(GeoPoint.coerce([40, -30.5]), g)
        self.assertEqual(GeoPoint.coerce(g.to_json()), g)
        self.assertIs(GeoPoint.coerce(g), g)

        # Ranges
        with self.assertRaises(ArgumentError):
            GeoPoint(91, 0)
        with self.assertRaises(ArgumentError):
            GeoPoint(0, -181)
        with self.assertRaises(ArgumentError):
            GeoPoint('north', 0)
        with self.assertRaises(ArgumentError):
            GeoPoint.coerce([1, 2, 3])

    def test_encode_value(self):
        # Flat filter form
        self.assertEqual(encode_value(Pointer('A', '1')), {'__type': 'Pointer', 'className': 'A', 'objectId': '1'})
        self.assertEqual(encode_value(date(2020, 1, 2)), {'__type': 'Date', 'iso': '2020-01-02T00:00:00.000Z'})
        self.assertEqual(encode_value(datetime(2020, 1, 2, 3, 4, 5)),
                         {'__type': 'Date', 'iso': '2020-01-02T03:04:05.000Z'})
        # Timezones are converted to UTC
        self.assertEqual(encode_value(datetime(2020, 1, 2, 5, 0, 0, tzinfo=timezone(timedelta(hours=2)))),
                         {'__type': 'Date', 'iso': '2020-01-02T03:00:00.000Z'})
        # Nested
        self.assertEqual(encode_value({'$in': (1, Pointer('A', '1'))}),
                         {'$in': [1, {'__type': 'Pointer', 'className': 'A', 'objectId': '1'}]})

        # Pipeline form
        self.assertEqual(encode_for_aggregation(Pointer('A', '1')), 'A$1')
        self.assertEqual(encode_for_aggregation(Pointer('A', '1').to_json()), 'A$1')
        self.assertEqual(encode_for_aggregation({'__type': 'Date', 'iso': '2020-01-02T00:00:00.000Z'}),
                         '2020-01-02T00:00:00.000Z')
        self.assertEqual(encode_for_aggregation(date(2020, 1, 2)), '2020-01-02T00:00:00.000Z')
        self.assertEqual(encode_for_aggregation({'$gt': 1}), {'$gt': 1})

    def test_helpers(self):
        self.assertEqual(object_id_of(Pointer('A', '1')), '1')
        self.assertEqual(object_id_of({'__type': 'Pointer', 'className': 'A', 'objectId': '2'}), '2')
        self.assertEqual(object_id_of('3'), '3')

        self.assertTrue(is_parse_type({'__type': 'Date', 'iso': ''}))
        self.assertTrue(is_parse_type({'__type': 'Date', 'iso': ''}, 'Date'))
        self.assertFalse(is_parse_type({'__type': 'Date', 'iso': ''}, 'Pointer'))
        self.assertFalse(is_parse_type({'__type': 'Whatever'}))
        self.assertFalse(is_parse_type('Date'))


class SettingsTest(unittest.TestCase):
    """ Test QuerySettingsDict """

    def test_defaults(self):
        s = QuerySettingsDict()
        self.assertIs(s['field_formatter'], columnize)
        self.assertEqual(s['cache'], True)
        self.assertEqual(s['use_master_key'], True)
        self.assertEqual(s['max_limit'], None)
        self.assertEqual(s['validate_pipelines'], True)
        self.assertEqual(s['max_pipeline_stages'], 20)
        self.assertEqual(s['max_pipeline_depth'], 10)
        self.assertEqual(s['max_query_depth'], 8)
        self.assertEqual(s['regex_max_length'], 500)

        # Nothing else
        self.assertEqual(len(s), 9)

    def test_unknown_settings(self):
        s = QuerySettingsDict()

        # Typos are errors
        with self.assertRaises(KeyError):
            s['max_limits'] = 10
        with self.assertRaises(KeyError):
            s.and_more(chache=False)
        with self.assertRaises(KeyError):
            QuerySettingsDict.coerce({'max_stages': 1})
        with self.assertRaises(TypeError):
            QuerySettingsDict(max_stages=1)

        # Known ones are fine
        s['max_limit'] = 10
        self.assertEqual(s['max_limit'], 10)

    def test_and_more(self):
        s = QuerySettingsDict(cache=False)
        s2 = s.and_more(max_limit=50)

        self.assertEqual(s2['cache'], False)
        self.assertEqual(s2['max_limit'], 50)
        # Original untouched
        self.assertEqual(s['max_limit'], None)
        self.assertIsInstance(s2, QuerySettingsDict)

    def test_pluck_from(self):
        config = {
            'cache': False,
            'max_limit': 100,
            # unrelated keys
            'database_url': 'mongodb://',
            'debug': True,
        }

        s = QuerySettingsDict.pluck_from(config)
        self.assertEqual(s['cache'], False)
        self.assertEqual(s['max_limit'], 100)
        self.assertNotIn('database_url', s)

        s = QuerySettingsDict.pluck_from(config, skip=('max_limit',))
        self.assertEqual(s['max_limit'], None)

    def test_coerce(self):
        self.assertEqual(QuerySettingsDict.coerce(None), QuerySettingsDict())

        s = QuerySettingsDict(cache=False)
        self.assertIs(QuerySettingsDict.coerce(s), s)

        s = QuerySettingsDict.coerce({'cache': False})
        self.assertIsInstance(s, QuerySettingsDict)
        self.assertEqual(s['cache'], False)
        self.assertEqual(s['max_pipeline_stages'], 20)
