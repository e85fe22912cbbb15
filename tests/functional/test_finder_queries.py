"""
Functional tests for finder lookups against an in-memory database.
Tests single and list retrieval, registered filters, hydration and counting.
"""

import pytest
from uuid import UUID
from sqlalchemy.exc import MultipleResultsFound, NoResultFound

from object_manager.exceptions import NonUniqueResultError, NoResultError
from object_manager.query.finder import ObjectFinder
from object_manager.query.schemas import Hydration
from tests.models import Membership, User


def emails(users):
    return sorted(user.email for user in users)


class TestSingleLookups:
    """Test find, find_by and their variants"""

    def test_find_by_id(self, user_finder, sample_users):
        """Test lookup by identifier"""
        bob = sample_users[1]

        assert user_finder.find(bob.id) is bob

    def test_find_missing(self, user_finder, sample_users):
        """Test that a missing id gives None"""
        assert user_finder.find(9999) is None

    def test_find_by_uuid_string(self, user_finder, sample_users):
        """Test that UUID shaped strings go through the uuid field"""
        carol = sample_users[2]

        assert user_finder.find(carol.uuid) is carol
        assert user_finder.find(UUID(carol.uuid)) is carol
        assert user_finder.find_by_uuid(UUID(carol.uuid)) is carol

    def test_find_composite_identifier(self, db_session, sample_memberships):
        """Test tuple and mapping ids on a composite key"""
        finder = ObjectFinder(db_session, Membership, "m")

        assert finder.find((1, "admins")).role == "owner"
        assert finder.find({"group_code": "staff", "user_id": 2}) is sample_memberships[2]
        assert finder.find({"group_code": "staff", "user_id": 3}) is None

    def test_find_or_die(self, user_finder, sample_users):
        """Test the raising variant"""
        assert user_finder.find_or_die(sample_users[0].id) is sample_users[0]

        with pytest.raises(NoResultError) as exc_info:
            user_finder.find_or_die(9999)

        assert exc_info.value.get_status_code() == 404
        assert isinstance(exc_info.value, NoResultFound)

    def test_find_or_die_as_array(self, user_finder, sample_users):
        """Test the plain dict variant"""
        alice = user_finder.find_or_die_as_array(sample_users[0].id)

        assert isinstance(alice, dict)
        assert alice["email"] == "alice@acme.test"
        assert alice["full_name"] == "Alice"

    def test_find_by(self, user_finder, sample_users):
        """Test lookup by criteria"""
        assert user_finder.find_by({"email": "bob@acme.test"}) is sample_users[1]
        assert user_finder.find_by({"email": "nobody@acme.test"}) is None

    def test_find_by_non_unique(self, user_finder, sample_users):
        """Test that several matches are an error"""
        with pytest.raises(NonUniqueResultError) as exc_info:
            user_finder.find_by({"status": "active"})

        assert isinstance(exc_info.value, MultipleResultsFound)

    def test_finder_is_reusable(self, user_finder, sample_users):
        """Test that each lookup starts from a clean query"""
        assert user_finder.find_by({"email": "bob@acme.test"}) is sample_users[1]
        assert user_finder.find_by({"full_name": "Dave"}) is sample_users[3]
        assert len(user_finder.find_all()) == 5


class TestListLookups:
    """Test find_all with filters, ordering and pagination"""

    def test_find_all(self, user_finder, sample_users):
        """Test that every row is returned"""
        assert len(user_finder.find_all()) == 5

    def test_registered_status_filter(self, user_finder, sample_users):
        """Test the status filter with a value and with its default"""
        assert emails(user_finder.find_all({"status": "inactive"})) == ["carol@globex.test"]
        assert len(user_finder.find_all({"status": ""})) == 3

    def test_ids_filter(self, user_finder, sample_users):
        """Test a variadic filter"""
        ids = [sample_users[0].id, sample_users[4].id]

        assert emails(user_finder.find_all({"ids": ids})) == ["alice@acme.test", "erin@example.test"]

    def test_field_list_filter(self, user_finder, sample_users):
        """Test IN on an entity field"""
        assert emails(user_finder.find_all({"age": [19, 52, 99]})) == ["dave@globex.test", "erin@example.test"]

    def test_association_filter(self, user_finder, sample_users, sample_companies):
        """Test filtering by a related instance"""
        acme = sample_companies[0]

        assert emails(user_finder.find_all({"company": acme})) == ["alice@acme.test", "bob@acme.test"]

    def test_join_filter(self, user_finder, sample_users):
        """Test a filter joining the company"""
        assert emails(user_finder.find_all({"company_name": "Globex"})) == ["carol@globex.test", "dave@globex.test"]

    def test_mapping_filter(self, user_finder, sample_users):
        """Test a filter taking a mapping"""
        found = user_finder.find_all({"age_between": {"min": 25, "max": 45}})

        assert emails(found) == ["alice@acme.test", "bob@acme.test", "carol@globex.test"]

    def test_named_filter(self, user_finder, sample_users):
        """Test a filter published under another name"""
        assert len(user_finder.find_all({"emailDomain": "acme.test"})) == 2

    def test_order_and_page(self, user_finder, sample_users):
        """Test ordering with the second page of two"""
        found = user_finder.find_all({"order": ["age", "ASC"], "offset_page_result": [2, 2]})

        assert [user.full_name for user in found] == ["Alice", "Bob"]

    def test_order_desc_with_limit(self, user_finder, sample_users):
        """Test direct chaining of ordering and limits"""
        found = user_finder.order("age", "DESC").max_result(2).find_all()

        assert [user.full_name for user in found] == ["Dave", "Bob"]

    def test_left_join_where(self, user_finder, sample_users):
        """Test a left join keeping users without a company"""
        found = user_finder.left_join("u.company", "c").where("c.id IS NULL").find_all()

        assert emails(found) == ["erin@example.test"]

    def test_join_entity_distinct_roots(self, user_finder, sample_orders):
        """Test that joining a collection yields each user once"""
        found = user_finder.join("u.orders", "o").where("o.amount > :minAmount", 50).find_all()

        assert emails(found) == ["alice@acme.test", "carol@globex.test"]

    def test_find_all_as_array(self, user_finder, sample_users):
        """Test plain dict results"""
        rows = user_finder.order("age").find_all_as_array({"status": "active"})

        assert [row["full_name"] for row in rows] == ["Alice", "Bob", "Dave"]
        assert all(isinstance(row, dict) for row in rows)

    def test_projection(self, user_finder, sample_users):
        """Test selecting fields instead of entities"""
        rows = user_finder.select("email", "age").order("age").max_result(1).find_all()

        assert [tuple(row) for row in rows] == [("erin@example.test", 19)]


class TestCount:
    """Test counting"""

    def test_count_all(self, user_finder, sample_users):
        """Test a distinct count of the identifier"""
        assert user_finder.count("id") == 5

    def test_count_default_field(self, user_finder, sample_users):
        """Test that the identifier is counted by default"""
        assert user_finder.count() == 5

    def test_count_distinct(self, user_finder, sample_users):
        """Test distinct and non distinct counts"""
        assert user_finder.count("company_id") == 2
        assert user_finder.count("company_id", distinct=False) == 4

    def test_count_with_search(self, user_finder, sample_users):
        """Test counting filtered rows"""
        assert user_finder.count("id", True, {"status": "active"}) == 3

    def test_count_ignores_group_by(self, user_finder, sample_users):
        """Test that grouping does not split the count"""
        assert user_finder.group_by("status").count("id") == 5

    def test_count_clears_state(self, user_finder, sample_users):
        """Test that the finder is clean after counting"""
        user_finder.count("id", True, {"status": "active"})

        assert len(user_finder.find_all()) == 5


class TestIndexedResults:
    """Test results keyed by an attribute"""

    def test_index_by_root_attribute(self, manager, sample_users):
        """Test a dict keyed by id"""
        result = manager.create_query_builder(User, "u", index_by="id").get_query().get_result()

        assert set(result) == {user.id for user in sample_users}
        assert result[sample_users[0].id] is sample_users[0]

    def test_index_by_with_array_hydration(self, manager, sample_users):
        """Test dict rows keyed by email"""
        result = manager.create_query_builder(User, "u", index_by="email").get_query().get_result(Hydration.ARRAY)

        assert result["bob@acme.test"]["age"] == 45
