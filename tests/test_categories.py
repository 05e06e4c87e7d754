import anyio
import pytest

from budget_server.errors import CategoryInUse, DuplicateName, NotFound, ValidationError


def test_create_and_list_categories(categories):
    async def run():
        await categories.create_category("Travel")
        await categories.create_category("food", {"color": "#ff0000", "icon": "fork"})
        await categories.create_category("Bills")
        return await categories.list_categories()

    page = anyio.run(run)
    assert [category.name for category in page.categories] == ["Bills", "food", "Travel"]
    assert page.total_count == 3
    assert page.limit == 100 and page.offset == 0
    food = page.categories[1]
    assert food.metadata == {"color": "#ff0000", "icon": "fork"}


def test_duplicate_names_are_case_insensitive(categories):
    anyio.run(categories.create_category, "Food")

    with pytest.raises(DuplicateName):
        anyio.run(categories.create_category, "  FOOD ")


def test_create_rejects_invalid_names(categories):
    with pytest.raises(ValidationError):
        anyio.run(categories.create_category, "   ")
    with pytest.raises(ValidationError):
        anyio.run(categories.create_category, "x" * 101)


def test_create_rejects_non_object_metadata(categories):
    with pytest.raises(ValidationError, match="metadata"):
        anyio.run(categories.create_category, "Food", ["red"])


def test_list_search_and_paging(categories):
    async def run():
        for name in ("Groceries", "Gas", "Gifts", "Rent", "100%_sure"):
            await categories.create_category(name)
        search = await categories.list_categories(search="g")
        paged = await categories.list_categories(limit=2, offset=1)
        literal = await categories.list_categories(search="%_")
        return search, paged, literal

    search, paged, literal = anyio.run(run)
    assert [category.name for category in search.categories] == ["Gas", "Gifts", "Groceries"]
    assert search.total_count == 3
    assert [category.name for category in paged.categories] == ["Gas", "Gifts"]
    assert paged.total_count == 5
    assert [category.name for category in literal.categories] == ["100%_sure"]


def test_rename_category(categories):
    async def run():
        food = await categories.create_category("Food", {"color": "green"})
        renamed = await categories.rename_category(food.id, "Groceries")
        return renamed, await categories.get_category(food.id)

    renamed, stored = anyio.run(run)
    assert renamed == stored
    assert stored.name == "Groceries"
    assert stored.metadata == {"color": "green"}


def test_rename_to_own_name_with_new_case_is_allowed(categories):
    async def run():
        food = await categories.create_category("food")
        return await categories.rename_category(food.id, "Food")

    assert anyio.run(run).name == "Food"


def test_rename_conflict_raises_duplicate(categories):
    async def run():
        await categories.create_category("Food")
        travel = await categories.create_category("Travel")
        with pytest.raises(DuplicateName):
            await categories.rename_category(travel.id, "food")
        return await categories.get_category(travel.id)

    assert anyio.run(run).name == "Travel"


def test_update_metadata_only(categories):
    async def run():
        food = await categories.create_category("Food", {"color": "green"})
        cleared = await categories.update_category(food.id, {"metadata": None})
        return cleared, await categories.get_category(food.id)

    cleared, stored = anyio.run(run)
    assert cleared.name == "Food"
    assert stored.metadata is None


def test_update_missing_category_raises_not_found(categories):
    with pytest.raises(NotFound):
        anyio.run(categories.rename_category, 77, "Anything")


def test_delete_unused_category(categories):
    async def run():
        food = await categories.create_category("Food")
        await categories.delete_category(food.id)
        with pytest.raises(NotFound):
            await categories.get_category(food.id)
        with pytest.raises(NotFound):
            await categories.delete_category(food.id)

    anyio.run(run)


def test_delete_category_in_use_is_rejected(categories, records):
    async def run():
        food = await categories.create_category("Food")
        record = await records.create_record({"name": "Bread", "amount": "2.50", "category_id": food.id})
        with pytest.raises(CategoryInUse):
            await categories.delete_category(food.id)
        return food, record, await categories.get_category(food.id), await records.get_record(record.id)

    food, record, stored_category, stored_record = anyio.run(run)
    assert stored_category == food
    assert stored_record == record
