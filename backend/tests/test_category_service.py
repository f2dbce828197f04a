import pytest

from tradeledger.errors import InvalidState, NotFound, ValidationError
from tradeledger.extensions import db
from tradeledger.models import Category
from tradeledger.services import category_service, product_service

from conftest import ACTOR_ID


class TestCategories:
    """Category master data; deletion is blocked while products use it."""

    def test_create(self, db_session):
        category = category_service.create_category(
            {"name": "  Paint ", "description": "Interior and exterior"},
            actor_id=ACTOR_ID,
        )

        assert category.name == "Paint"
        assert category.is_active is True
        assert category.created_by == ACTOR_ID

    def test_name_is_required(self, db_session):
        with pytest.raises(ValidationError) as excinfo:
            category_service.create_category({"description": "No name"})
        assert excinfo.value.field == "name"

    def test_duplicate_name_ignores_case(self, category):
        with pytest.raises(ValidationError) as excinfo:
            category_service.create_category({"name": "building materials"})
        assert excinfo.value.field == "name"

    def test_update_allow_list(self, category):
        updated = category_service.update_category(category.id, {"description": "Cement, sand, blocks"})
        assert updated.description == "Cement, sand, blocks"

        with pytest.raises(ValidationError):
            category_service.update_category(category.id, {"created_by": 99})
        with pytest.raises(ValidationError):
            category_service.update_category(category.id, {"id": 5})

    def test_rename_onto_existing_name(self, category):
        other = category_service.create_category({"name": "Tools"})

        with pytest.raises(ValidationError):
            category_service.update_category(other.id, {"name": "Building Materials"})

        # Renaming to its own name is not a clash
        same = category_service.update_category(category.id, {"name": "Building Materials"})
        assert same.id == category.id

    def test_unknown_category(self, db_session):
        with pytest.raises(NotFound):
            category_service.get_category(404)
        with pytest.raises(NotFound):
            category_service.update_category(404, {"description": "x"})
        with pytest.raises(NotFound):
            category_service.delete_category(404)

    def test_list_hides_inactive(self, category):
        category_service.create_category({"name": "Archive Bin", "is_active": False})
        category_service.create_category({"name": "Adhesives"})

        assert [c.name for c in category_service.list_categories()] == ["Adhesives", "Building Materials"]
        assert [c.name for c in category_service.list_categories(include_inactive=True)] == [
            "Adhesives",
            "Archive Bin",
            "Building Materials",
        ]

    def test_products_count(self, product, empty_product, category):
        found, products_count = category_service.get_category_with_count(category.id)

        assert found.id == category.id
        assert products_count == 2
        assert found.to_dict(products_count=products_count)["products_count"] == 2
        assert "products_count" not in found.to_dict()

    def test_delete_unused(self, db_session):
        category = category_service.create_category({"name": "Seasonal"})

        category_service.delete_category(category.id)

        assert db.session.get(Category, category.id) is None

    def test_delete_blocked_while_referenced(self, product, category):
        with pytest.raises(InvalidState) as excinfo:
            category_service.delete_category(category.id)

        assert excinfo.value.details["entity"] == "category"
        assert "1 product(s)" in excinfo.value.message
        db.session.expire_all()
        assert db.session.get(Category, category.id) is not None

    def test_archived_products_still_block_delete(self, product, category):
        product_service.archive_product(product.id)

        with pytest.raises(InvalidState):
            category_service.delete_category(category.id)

    def test_delete_after_products_move(self, product, category):
        tools = category_service.create_category({"name": "Tools"})
        product_service.update_product(product.id, {"category_id": tools.id})

        category_service.delete_category(category.id)

        assert [c.name for c in category_service.list_categories()] == ["Tools"]
