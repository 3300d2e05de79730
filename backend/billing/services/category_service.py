# Overview: Service-layer operations for categories; tree assembly and re-parent cycle checks.

from __future__ import annotations

from sqlalchemy import exists, select
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, NotFound, ValidationError
from ..models import Category, Product
from ..validation import UNSET, PayloadValidator
from .concurrency import unit_of_work


class CategoryArena:
    """
    Index-based view of the category forest.

    Nodes live in a flat list; `children[i]` holds indexes into it. Built
    once per request from a single query, so tree walks never recurse into
    the database.
    """

    def __init__(self, categories):
        self.nodes = list(categories)
        self.index_of = {c.id: i for i, c in enumerate(self.nodes)}
        self.children: list[list[int]] = [[] for _ in self.nodes]
        self.roots: list[int] = []
        for i, category in enumerate(self.nodes):
            parent = self.index_of.get(category.parent_id)
            if parent is None:
                self.roots.append(i)
            else:
                self.children[parent].append(i)

    def descendants(self, category_id: int) -> set[int]:
        """Ids of every category below `category_id` (iterative DFS)."""
        start = self.index_of.get(category_id)
        if start is None:
            return set()
        found: set[int] = set()
        seen = {start}
        stack = list(self.children[start])
        while stack:
            i = stack.pop()
            if i in seen:
                continue
            seen.add(i)
            found.add(self.nodes[i].id)
            stack.extend(self.children[i])
        return found

    def would_cycle(self, category_id: int, new_parent_id: int | None) -> bool:
        if new_parent_id is None:
            return False
        if new_parent_id == category_id:
            return True
        return new_parent_id in self.descendants(category_id)

    def to_tree(self) -> list[dict]:
        """Nested dicts with a `children` list, siblings sorted by name."""
        built = [dict(node.to_dict(), children=[]) for node in self.nodes]
        order = sorted(range(len(self.nodes)), key=lambda i: self.nodes[i].name.lower())
        rank = {i: r for r, i in enumerate(order)}
        for i, kids in enumerate(self.children):
            built[i]["children"] = [built[k] for k in sorted(kids, key=rank.get)]
        return [built[i] for i in sorted(self.roots, key=rank.get)]


class CategoryService:
    def __init__(self, session):
        self.session = session

    def list_flat(self, *, active_only: bool = False) -> list[Category]:
        query = select(Category)
        if active_only:
            query = query.where(Category.is_active.is_(True))
        return list(self.session.execute(query.order_by(Category.name.asc())).scalars())

    def tree(self, *, active_only: bool = False) -> list[dict]:
        return CategoryArena(self.list_flat(active_only=active_only)).to_tree()

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if category is None:
            raise NotFound(f"Category {category_id} not found")
        return category

    def create(self, payload) -> Category:
        v = PayloadValidator(payload)
        name = v.string("name", required=True, max_length=128)
        description = v.string("description")
        parent_id = v.integer("parentId")
        v.raise_if_errors()

        if parent_id is not None:
            self._require_parent(parent_id)
        self._require_unique_name(name, parent_id)

        with unit_of_work(self.session):
            category = Category(name=name, description=description, parent_id=parent_id, is_active=True)
            self.session.add(category)
            try:
                self.session.flush()
            except IntegrityError:
                raise ConflictError("Category with this name already exists at this level", field="name")
        return category

    def update(self, category_id: int, payload) -> Category:
        category = self.get(category_id)
        v = PayloadValidator(payload)
        name = v.string("name", nullable=False, max_length=128, default=UNSET)
        description = v.string("description", default=UNSET)
        parent_id = v.integer("parentId", default=UNSET)
        is_active = v.boolean("isActive", default=UNSET)
        if name == "":
            v.add("name", "name cannot be blank")
        v.raise_if_errors()

        target_parent = category.parent_id if parent_id is UNSET else parent_id
        target_name = category.name if name is UNSET else name

        if parent_id is not UNSET and parent_id != category.parent_id:
            if parent_id is not None:
                self._require_parent(parent_id)
            arena = CategoryArena(self.list_flat())
            if arena.would_cycle(category.id, parent_id):
                raise ValidationError(
                    "Category cannot be its own ancestor",
                    field="parentId",
                )
        if (target_name, target_parent) != (category.name, category.parent_id):
            self._require_unique_name(target_name, target_parent, exclude_id=category.id)

        with unit_of_work(self.session):
            if name is not UNSET:
                category.name = name
            if description is not UNSET:
                category.description = description
            if parent_id is not UNSET:
                category.parent_id = parent_id
            if is_active is not UNSET:
                category.is_active = is_active
        return category

    def delete(self, category_id: int) -> None:
        """Only leaf categories with no products assigned can go."""
        category = self.get(category_id)
        if self.session.execute(select(exists().where(Category.parent_id == category_id))).scalar():
            raise ConflictError("Cannot delete a category that has subcategories; move or delete them first")
        if self.session.execute(select(exists().where(Product.category_id == category_id))).scalar():
            raise ConflictError("Cannot delete a category assigned to products; reassign them first")
        with unit_of_work(self.session):
            self.session.delete(category)

    def _require_parent(self, parent_id: int) -> None:
        if self.session.get(Category, parent_id) is None:
            raise ValidationError(f"Parent category {parent_id} not found", field="parentId")

    def _require_unique_name(self, name: str, parent_id: int | None, *, exclude_id: int | None = None) -> None:
        # NULL parent_id defeats the DB unique constraint for root categories
        query = select(Category.id).where(Category.name == name)
        if parent_id is None:
            query = query.where(Category.parent_id.is_(None))
        else:
            query = query.where(Category.parent_id == parent_id)
        if exclude_id is not None:
            query = query.where(Category.id != exclude_id)
        if self.session.execute(query).first():
            raise ConflictError("Category with this name already exists at this level", field="name")
