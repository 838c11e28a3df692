# tests/test_catalog.py
import pytest

from circulation.core.errors import CategoryCycle, DuplicateKey, NotFound, ValidationFailed
from circulation.models.category import Category
from circulation.models.item import Book
from circulation.models.member import Member
from tests.conftest import T0


async def test_ancestors_nearest_first(library, seed):
    root = await seed.category("Fiction")
    mid = await seed.category("Science Fiction", parent_id=root.id)
    leaf = await seed.category("Space Opera", parent_id=mid.id)

    assert [c.id for c in await library.catalog.ancestors(leaf.id)] == [mid.id, root.id]
    assert await library.catalog.ancestors(root.id) == []


async def test_set_parent_rejects_cycles(library, seed):
    root = await seed.category("Fiction")
    mid = await seed.category("Science Fiction", parent_id=root.id)
    leaf = await seed.category("Space Opera", parent_id=mid.id)

    with pytest.raises(CategoryCycle):
        await library.catalog.set_parent(root.id, leaf.id)
    with pytest.raises(CategoryCycle):
        await library.catalog.set_parent(mid.id, mid.id)
    assert (await library.repo.categories.require(root.id)).parent_id is None


async def test_set_parent_moves_subtree(library, seed):
    fiction = await seed.category("Fiction")
    classics = await seed.category("Classics")
    novel = await seed.category("Novels", parent_id=fiction.id)

    moved = await library.catalog.set_parent(novel.id, classics.id)
    assert moved.parent_id == classics.id
    detached = await library.catalog.set_parent(novel.id, None)
    assert detached.parent_id is None


async def test_unknown_parent(library):
    with pytest.raises(NotFound):
        await library.catalog.add_category(Category.Create(name="Orphans", parent_id="cat_missing"))


async def test_duplicate_category_name(library, seed):
    await seed.category("Fiction")
    with pytest.raises(DuplicateKey):
        await seed.category("Fiction")


async def test_book_with_unknown_category(library):
    with pytest.raises(NotFound):
        await library.catalog.add_book(
            Book.Create(title="Lost", isbn="978-1-00000-000-1", category_ids=["cat_missing"])
        )


async def test_book_and_copies(library, seed):
    fiction = await seed.category("Fiction")
    book = await seed.book("Dune", category_ids=[fiction.id])
    first = await seed.item(book)
    second = await seed.item(book)

    assert (await library.catalog.get_book(book.id)).category_ids == [fiction.id]
    assert {i.id for i in await library.catalog.copies(book.id)} == {first.id, second.id}
    assert first.acquisition_date == T0.date()


async def test_duplicate_member_email(library, seed):
    member = await seed.member()
    with pytest.raises(DuplicateKey):
        await library.directory.register_member(
            Member.Create(first_name="Twin", last_name="Reader", email=member.email), T0
        )


async def test_membership_expiry_before_start_is_invalid(library):
    with pytest.raises(ValidationFailed):
        await library.directory.register_member(
            Member.Create(
                first_name="Early",
                last_name="Bird",
                email="early@citylibrary.org",
                membership_expiry=T0.date().replace(year=2020),
            ),
            T0,
        )
