import json
import unittest
from copy import copy
from unittest import mock

from mongopipe import Query, Constraint, CompoundConstraint, Pointer, RateLimiter
from mongopipe.exc import (
    ArgumentError,
    InvalidOperatorError,
    TableMismatchError,
    ClientNotBoundError,
    StageLimitError,
    RateLimitExceeded,
)


class FakeClient:
    """ A client that records what it was asked to run """

    def __init__(self):
        self.calls = []

    def find_objects(self, table, params, **options):
        self.calls.append(('find', table, params, options))
        return [{'objectId': 'found'}]

    def aggregate_objects(self, table, pipeline, **options):
        self.calls.append(('aggregate', table, pipeline, options))
        return [{'objectId': 'aggregated'}]


class QueryTest(unittest.TestCase):
    """ Test Query """

    longMessage = True
    maxDiff = None

    def test_where(self):
        # Keyword conditions
        q = Query('Post', published=True).where(votes__gte=10, play_count__lt=5)
        self.assertEqual(q.compile_where(), {
            'published': True,
            'votes': {'$gte': 10},
            'playCount': {'$lt': 5},
        })

        # Constraint objects & tuples & dicts
        q = Query('Post').where(Constraint('votes', 'gt', 1), ('title', 'starts_with', 'How'), {'author__id': 'a1'})
        self.assertEqual(q.compile_where(), {
            'votes': {'$gt': 1},
            'title': {'$regex': '^How', '$options': 'i'},
            'author': {'__type': 'Pointer', 'className': 'Author', 'objectId': 'a1'},
        })

        # A list of constraints
        q2 = Query('Post').where(q.constraints)
        self.assertEqual(q2.compile_where(), q.compile_where())

        # Unknown operator
        with self.assertRaises(InvalidOperatorError):
            Query('Post', votes__greater=1)
        # Invalid value
        with self.assertRaises(ArgumentError):
            Query('Post', votes__between=1)
        # Not a constraint
        with self.assertRaises(ArgumentError):
            Query('Post').where(42)
        # No table
        with self.assertRaises(ArgumentError):
            Query('')

    def test_compile(self):
        q = Query('Post', votes__gt=10) \
            .order('-created_at', 'title') \
            .keys('title', 'play_count') \
            .includes('author') \
            .limit(10) \
            .skip(20)

        params = q.compile()
        self.assertEqual(json.loads(params.pop('where')), {'votes': {'$gt': 10}})
        self.assertEqual(params, {
            'order': '-createdAt,title',
            'keys': 'title,playCount',
            'include': 'author',
            'limit': 10,
            'skip': 20,
        })

        # Not encoded, with a class name
        self.assertEqual(q.compile(encode=False, include_class_name=True), {
            'where': {'votes': {'$gt': 10}},
            'order': '-createdAt,title',
            'keys': 'title,playCount',
            'include': 'author',
            'limit': 10,
            'skip': 20,
            'className': 'Post',
        })

        # Empty query
        self.assertEqual(Query('Post').compile(), {})

        # Count
        self.assertEqual(Query('Post', votes=1).count().limit(10).compile(encode=False),
                         {'where': {'votes': 1}, 'limit': 0, 'count': 1})

    def test_order(self):
        q = Query('Post').order('-created_at,title', '+votes', 'play_count-')
        self.assertEqual(q.order_fields, ['-createdAt', 'title', 'votes', '-playCount'])

        # Pipelines
        q.where(tags__size=1)
        self.assertEqual(q.build_pipeline()[-1], {'$sort': {'_created_at': -1, 'title': 1, 'votes': 1, 'playCount': -1}})

    def test_limit_skip(self):
        q = Query('Post')
        q.limit(10).skip(5)
        self.assertEqual((q.limit_value, q.skip_value), (10, 5))

        # Negative values
        q.limit(-1).skip(-1)
        self.assertEqual((q.limit_value, q.skip_value), (0, 0))
        self.assertEqual(q.compile(), {})

        # No limit
        q.limit(None)
        self.assertEqual(q.limit_value, None)

        # Clamped to max_limit
        q = Query('Post', settings={'max_limit': 100})
        q.limit(1000)
        self.assertEqual(q.limit_value, 100)
        q.limit(50)
        self.assertEqual(q.limit_value, 50)

        # Unknown settings
        with self.assertRaises(KeyError):
            Query('Post', settings={'max_limits': 100})

    def test_or_where(self):
        q = Query('Post', published=True)
        q.or_where(author__id='a1')
        self.assertEqual(q.compile_where(), {'$or': [
            {'published': True},
            {'author': {'__type': 'Pointer', 'className': 'Author', 'objectId': 'a1'}},
        ]})

        # More alternatives go into the same $or
        q.or_where(votes__gt=100, featured=True)
        self.assertEqual(q.compile_where(), {'$or': [
            {'published': True},
            {'author': {'__type': 'Pointer', 'className': 'Author', 'objectId': 'a1'}},
            {'votes': {'$gt': 100}, 'featured': True},
        ]})

        # Nothing: no changes
        before = q.compile_where()
        q.or_where()
        self.assertEqual(q.compile_where(), before)

        # On an empty query
        self.assertEqual(Query('Post').or_where(votes=1).compile_where(), {'$or': [{'votes': 1}]})

        # Then AND more
        q = Query('Post', votes=1).or_where(votes=2).where(published=True)
        self.assertEqual(q.compile_where(), {'$or': [{'votes': 1}, {'votes': 2}], 'published': True})

        # Pipeline constraints can't be put into $or
        with self.assertRaises(ArgumentError):
            Query('Post', published=True).or_where(tags__size=2)
        with self.assertRaises(ArgumentError):
            Query('Post', tags__size=2).or_where(published=True)

    def test_or_(self):
        q1 = Query('Post', votes__gt=10)
        q2 = Query('Post', featured=True, published=True)

        q = Query.or_(q1, q2)
        self.assertEqual(q.table, 'Post')
        self.assertEqual(q.compile_where(), {'$or': [
            {'votes': {'$gt': 10}},
            {'featured': True, 'published': True},
        ]})

        # Empty queries are skipped
        empty = Query('Post')
        self.assertEqual(Query.or_(q1, empty).compile_where(), {'$or': [q1.compile_where()]})
        self.assertEqual(Query.or_(empty, q1, empty).compile_where(), {'$or': [q1.compile_where()]})

        # A list
        self.assertEqual(Query.or_([q1, q2]).compile_where(), q.compile_where())

        # Inputs are not modified
        self.assertEqual(q1.compile_where(), {'votes': {'$gt': 10}})

        # Different tables
        with self.assertRaises(TableMismatchError) as e:
            Query.or_(q1, Query('Comment', votes__gt=1))
        self.assertIsInstance(e.exception, ArgumentError)
        self.assertEqual(e.exception.tables, ('Comment', 'Post'))

        # Nothing
        with self.assertRaises(ArgumentError):
            Query.or_()

    def test_and_(self):
        q1 = Query('Post', votes__gt=10, featured=True)
        q2 = Query('Post', published=True)
        q3 = Query('Post', tags__size=2)

        q = Query.and_(q1, q2, q3)
        self.assertEqual(len(q.constraints), len(q1.constraints) + len(q2.constraints) + len(q3.constraints))
        self.assertEqual(q.compile_where(), {'votes': {'$gt': 10}, 'featured': True, 'published': True})
        self.assertTrue(q.requires_pipeline())

        with self.assertRaises(TableMismatchError):
            Query.and_(q1, Query('Comment'))

    def test_clone(self):
        q = Query('Post', votes__gt=10).order('title').keys('title').includes('author').limit(5)
        q.bind(FakeClient())

        c = q.clone()
        self.assertIsNot(c, q)
        self.assertEqual(c.compile(), q.compile())
        # Transient state is not copied
        self.assertIsNone(c._client)
        self.assertIsNone(c._results)

        # Independent: changing the clone does not change the original
        c.where(published=True).order('-votes').keys('votes').includes('editor').limit(1).skip(1)
        self.assertEqual(q.compile(encode=False), {
            'where': {'votes': {'$gt': 10}},
            'order': 'title',
            'keys': 'title',
            'include': 'author',
            'limit': 5,
        })

        # ... and vice versa
        q.where(featured=True)
        self.assertNotIn('featured', c.compile_where())

        # copy() clones too
        self.assertEqual(copy(q).compile(), q.compile())

    def test_clone_settings(self):
        """ Clones and combined queries have settings of their own """
        q = Query('Post', votes__gt=10)

        c = q.clone()
        self.assertEqual(c.settings, q.settings)
        self.assertIsNot(c.settings, q.settings)
        c.settings['validate_pipelines'] = False
        self.assertTrue(q.settings['validate_pipelines'])

        q.settings['max_limit'] = 10
        self.assertIsNone(c.settings['max_limit'])

        for combined in (Query.or_(q), Query.and_(q)):
            self.assertIsNot(combined.settings, q.settings)
            combined.settings['validate_pipelines'] = False
            self.assertTrue(q.settings['validate_pipelines'])

    def test_clone_fallback(self):
        """ When something can't be deep-copied, the lists are still copied """
        q = Query('Post', votes__gt=10).order('title')

        with mock.patch('mongopipe.query.deepcopy', side_effect=TypeError('cannot pickle')), \
                self.assertLogs('mongopipe.query', level='WARNING') as logs:
            c = q.clone()

        self.assertTrue(any('deep-copied' in line for line in logs.output))

        # Still independent lists
        self.assertIsNot(c._where, q._where)
        self.assertIsNot(c._order, q._order)
        c.where(published=True).order('votes')
        self.assertEqual(q.compile_where(), {'votes': {'$gt': 10}})
        self.assertEqual(q.order_fields, ['title'])

    def test_pipeline(self):
        q = Query('Post', votes__gt=10, author=Pointer('_User', 'u1'), created_at__gte={'__type': 'Date', 'iso': '2020'})
        q.where(tags__set_equals=['a', 'b'], comments__size={'gt': 0})
        q.order('-created_at').limit(10).skip(20)

        self.assertTrue(q.requires_pipeline())

        # The stages of pipeline constraints only
        self.assertEqual(q.pipeline(), [
            {'$match': {'$expr': {'$setEquals': ['$tags', ['a', 'b']]}}},
            {'$match': {'$expr': {'$gt': [{'$size': {'$ifNull': ['$comments', []]}}, 0]}}},
        ])

        # The complete pipeline
        self.assertEqual(q.build_pipeline(), [
            {'$match': {
                'votes': {'$gt': 10},
                '_p_author': '_User$u1',
                '_created_at': {'$gte': '2020'},
            }},
            {'$match': {'$expr': {'$setEquals': ['$tags', ['a', 'b']]}}},
            {'$match': {'$expr': {'$gt': [{'$size': {'$ifNull': ['$comments', []]}}, 0]}}},
            {'$sort': {'_created_at': -1}},
            {'$limit': 10},
            {'$skip': 20},
        ])

        # The REST form only has the flat part
        self.assertEqual(q.compile(encode=False)['where'], {
            'votes': {'$gt': 10},
            'author': {'__type': 'Pointer', 'className': '_User', 'objectId': 'u1'},
            'createdAt': {'$gte': {'__type': 'Date', 'iso': '2020'}},
        })

        # A flat query
        self.assertFalse(Query('Post', votes__gt=1).requires_pipeline())
        self.assertEqual(Query('Post', votes__gt=1).pipeline(), [])

    def test_linked_pointer(self):
        q = Query('Post', author__equals_linked_pointer={'through': 'project', 'field': 'owner'})
        self.assertEqual(q.build_pipeline(), [
            {'$addFields': {'_p_project_id': {'$substr': ['$_p_project', 8, -1]}}},
            {'$lookup': {'from': 'Project', 'localField': '_p_project', 'foreignField': '_id', 'as': 'project_data'}},
            {'$match': {'$expr': {'$eq': [{'$arrayElemAt': ['$project_data._p_owner', 0]}, '$_p_author']}}},
        ])

        q = Query('Post', author__does_not_equal_linked_pointer={'through': 'project', 'field': 'owner'})
        self.assertEqual(q.build_pipeline()[2],
                         {'$match': {'$expr': {'$ne': [{'$arrayElemAt': ['$project_data._p_owner', 0]}, '$_p_author']}}})

        with self.assertRaises(ArgumentError):
            Query('Post', author__equals_linked_pointer={'through': 'project'})

    def test_compile_pipeline(self):
        q = Query('Post', votes__gt=1, tags__size=2)

        # Validated
        self.assertEqual(q.compile_pipeline(), q.build_pipeline())

        # Too many stages for the settings
        q = Query('Post', settings={'max_pipeline_stages': 2}, votes__gt=1, tags__size=2).limit(1)
        with self.assertRaises(StageLimitError):
            q.compile_pipeline()
        # ... unless validation is off
        self.assertEqual(len(q.compile_pipeline(validate=False)), 3)
        q.settings['validate_pipelines'] = False
        self.assertEqual(len(q.compile_pipeline()), 3)

        # Rate limited
        limiter = RateLimiter(limit=1, window=60)
        q = Query('Post', tags__size=2)
        q.compile_pipeline(rate_limiter=limiter, caller='agent')
        with self.assertRaises(RateLimitExceeded):
            q.compile_pipeline(rate_limiter=limiter, caller='agent')
        # Another caller is fine
        q.compile_pipeline(rate_limiter=limiter, caller='another-agent')

    def test_count_distinct(self):
        q = Query('Post', votes__gt=1, tags__size=2).order('title').limit(10).skip(5)

        self.assertEqual(q.count_pipeline(), [
            {'$match': {'votes': {'$gt': 1}}},
            {'$match': {'$expr': {'$eq': [{'$size': {'$ifNull': ['$tags', []]}}, 2]}}},
            {'$count': 'count'},
        ])
        self.assertEqual(q.count_distinct_pipeline('author_name'), [
            {'$match': {'votes': {'$gt': 1}}},
            {'$match': {'$expr': {'$eq': [{'$size': {'$ifNull': ['$tags', []]}}, 2]}}},
            {'$group': {'_id': '$authorName'}},
            {'$count': 'distinctCount'},
        ])
        self.assertEqual(Query('Post').distinct_pipeline('created_at'), [
            {'$group': {'_id': '$_created_at'}},
            {'$project': {'_id': 0, 'value': '$_id'}},
        ])

    def test_cache_flags(self):
        # Settings default
        q = Query('Post')
        self.assertEqual(q.resolve_cache(), True)
        self.assertEqual(q.resolve_use_master_key(), True)

        # Settings
        q = Query('Post', settings={'cache': False, 'use_master_key': False})
        self.assertEqual(q.resolve_cache(), False)
        self.assertEqual(q.resolve_use_master_key(), False)

        # Query flag overrides settings
        q.cache(True).use_master_key()
        self.assertEqual(q.resolve_cache(), True)
        self.assertEqual(q.resolve_use_master_key(), True)

        # Per-call override wins
        self.assertEqual(q.resolve_cache(False), False)
        self.assertEqual(q.resolve_use_master_key(False), False)

    def test_results(self):
        # Not bound
        with self.assertRaises(ClientNotBoundError):
            Query('Post').results()

        # Flat query
        client = FakeClient()
        q = Query('Post', votes__gt=1).cache(False).bind(client)
        self.assertEqual(q.results(), [{'objectId': 'found'}])
        self.assertEqual(client.calls, [
            ('find', 'Post', {'where': {'votes': {'$gt': 1}}}, {'cache': False, 'use_master_key': True}),
        ])

        # Results are kept
        q.results()
        self.assertEqual(len(client.calls), 1)

        # ... until the query changes
        q.limit(5)
        q.results(cache=True)
        self.assertEqual(client.calls[-1],
                         ('find', 'Post', {'where': {'votes': {'$gt': 1}}, 'limit': 5},
                          {'cache': True, 'use_master_key': True}))

        # Pipeline query
        client = FakeClient()
        q = Query('Post', tags__size=2).bind(client)
        self.assertEqual(q.results(), [{'objectId': 'aggregated'}])
        self.assertEqual(client.calls, [
            ('aggregate', 'Post', [{'$match': {'$expr': {'$eq': [{'$size': {'$ifNull': ['$tags', []]}}, 2]}}}],
             {'cache': True, 'use_master_key': True}),
        ])

    def test_compound_where(self):
        q = Query('Post').where(CompoundConstraint('or', [
            [Constraint('votes', 'gt', 10)],
            [Constraint('featured', 'eq', True)],
        ]), published=True)
        self.assertEqual(q.compile_where(), {
            '$or': [{'votes': {'$gt': 10}}, {'featured': True}],
            'published': True,
        })

    def test_repr(self):
        self.assertEqual(repr(Query('Post', votes__gt=1)), 'Query(Post: [Constraint(votes gt 1)])')
