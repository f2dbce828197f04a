# Overview: Product category master data; a category in use cannot be deleted.

"""
Category Service

- Names are unique, compared case-insensitively.
- update_category uses the same allow-list as create (name, description,
  is_active).
- delete_category refuses while any product, archived or not, still
  references the category. Deactivating is the way to retire one in use.
"""

from __future__ import annotations

import logging

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..errors import InvalidState, NotFound, ValidationError
from ..extensions import db
from ..models import Category, Product
from ..validation import CATEGORY_POLICY, validate_payload
from .concurrency import lock_for_update, run_with_retry


logger = logging.getLogger(__name__)


def _check_name_free(name: str, *, exclude_id: int | None = None) -> None:
    query = db.session.query(Category.id).filter(func.lower(Category.name) == name.lower())
    if exclude_id is not None:
        query = query.filter(Category.id != exclude_id)
    if query.first() is not None:
        raise ValidationError(f"Category {name} already exists", field="name")


def _products_count(category_id: int) -> int:
    return db.session.query(func.count(Product.id)).filter(Product.category_id == category_id).scalar() or 0


def create_category(payload: dict, *, actor_id: int | None = None) -> Category:
    patch = validate_payload(model=Category, payload=payload, policy=CATEGORY_POLICY, partial=False)

    def _op() -> Category:
        _check_name_free(patch["name"])
        category = Category(created_by=actor_id, **patch)
        db.session.add(category)
        try:
            db.session.flush()
        except IntegrityError:
            raise ValidationError(f"Category {patch['name']} already exists", field="name")
        db.session.commit()
        return category

    category = run_with_retry(_op)
    logger.info("Category %s created: %s", category.id, category.name)
    return category


def update_category(category_id: int, payload: dict) -> Category:
    patch = validate_payload(model=Category, payload=payload, policy=CATEGORY_POLICY, partial=True)

    def _op() -> Category:
        category = lock_for_update(db.session.query(Category).filter_by(id=category_id)).first()
        if category is None:
            raise NotFound("category", category_id)
        if "name" in patch:
            _check_name_free(patch["name"], exclude_id=category_id)
        for key, value in patch.items():
            setattr(category, key, value)
        db.session.commit()
        return category

    return run_with_retry(_op)


def get_category(category_id: int) -> Category:
    category = db.session.get(Category, category_id)
    if category is None:
        raise NotFound("category", category_id)
    return category


def get_category_with_count(category_id: int) -> tuple[Category, int]:
    """Category plus the number of products filed under it."""
    category = get_category(category_id)
    return category, _products_count(category.id)


def list_categories(*, include_inactive: bool = False) -> list[Category]:
    query = db.session.query(Category)
    if not include_inactive:
        query = query.filter(Category.is_active.is_(True))
    return query.order_by(Category.name.asc()).all()


def delete_category(category_id: int) -> None:
    def _op() -> str:
        category = lock_for_update(db.session.query(Category).filter_by(id=category_id)).first()
        if category is None:
            raise NotFound("category", category_id)
        in_use = _products_count(category.id)
        if in_use:
            raise InvalidState(
                "category",
                "in_use",
                "delete",
                message=f"Cannot delete category {category.name}: {in_use} product(s) still reference it",
            )
        name = category.name
        db.session.delete(category)
        db.session.commit()
        return name

    name = run_with_retry(_op)
    logger.info("Category %s deleted", name)
