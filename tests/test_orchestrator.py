import json
from pathlib import Path
from unittest import mock

import pytest

from conftest import FakeExtractor, FakeLoader, make_category, make_post, make_user
from flarum_migrator.exceptions import CategoryNotMigratedError
from flarum_migrator.models.migration import EntityKind, MigrationStatus, SourceEntity
from flarum_migrator.orchestrator import MigrationOrchestrator
from flarum_migrator.services.mapping_store import JSONLMappingStore


def build_source():
    users = [make_user(1), make_user(2), make_user(3)]
    categories = [make_category(2, position=0), make_category(1, position=1)]
    posts = [
        make_post(10, 100, 10, user_id=1, category_id=1, day=1),
        make_post(11, 100, 10, user_id=2, day=2),
        make_post(21, 200, 20, user_id=3, title="Parent was deleted", day=3),
        make_post(30, 300, 30, user_id=42, category_id=2, day=4),
        make_post(12, 100, 10, user_id=1, day=5),
    ]
    return FakeExtractor(users=users, categories=categories, posts=posts)


def make_orchestrator(config, store, extractor=None, loader=None):
    return MigrationOrchestrator(
        config,
        extractor=extractor or build_source(),
        loader=loader or FakeLoader(store),
        store=store,
    )


def test_full_migration(config, store):
    orchestrator = make_orchestrator(config, store)

    run = orchestrator.run_migration()

    assert run.status == MigrationStatus.COMPLETED
    assert store.count(EntityKind.USER) == 3
    assert store.count(EntityKind.CATEGORY_TOP) == 2
    assert store.count(EntityKind.CATEGORY_CHILD) == 2
    assert store.count(EntityKind.POST) == 4
    assert store.count(EntityKind.TOPIC) == 2

    posts = run.get_step(SourceEntity.POSTS.value)
    assert posts.records_created == 4
    assert posts.records_skipped == 1
    assert "Parent post 20" in posts.warnings[0]


def test_rerun_creates_nothing(config, store):
    loader = FakeLoader(store)
    make_orchestrator(config, store, loader=loader).run_migration()
    created = (len(loader.users), len(loader.categories), len(loader.posts))

    run = make_orchestrator(config, store, loader=loader).run_migration()

    assert (len(loader.users), len(loader.categories), len(loader.posts)) == created
    assert run.totals()["created"] == 0
    users = run.get_step(SourceEntity.USERS.value)
    assert users.batches_skipped == 2
    assert users.batches_processed == 0


def test_mapped_batch_never_reaches_the_mapper(config, store):
    for user_id, target in ((1, 501), (2, 502)):
        store.put(EntityKind.USER, user_id, target)
    orchestrator = make_orchestrator(config, store)

    with mock.patch.object(orchestrator.mapper, "map_user", wraps=orchestrator.mapper.map_user) as spy:
        step = orchestrator.run(SourceEntity.USERS)

    # batch [1, 2] is skipped, batch [3] goes through
    assert spy.call_count == 1
    assert spy.call_args[0][0].id == 3
    assert step.batches_skipped == 1
    assert step.records_created == 1


def test_partially_mapped_batch_is_reprocessed_safely(config, store):
    store.put(EntityKind.USER, 1, 501)
    loader = FakeLoader(store)

    step = make_orchestrator(config, store, loader=loader).run(SourceEntity.USERS)

    assert step.batches_skipped == 0
    assert step.records_already_mapped == 1
    assert step.records_created == 2
    assert store.get(EntityKind.USER, 1) == 501
    assert [u["id"] for u in loader.users] == [2, 3]


def test_each_tag_becomes_two_categories(config, store):
    loader = FakeLoader(store)
    make_orchestrator(config, store, loader=loader).run(SourceEntity.CATEGORIES)

    for tag_id in (1, 2):
        top = store.get(EntityKind.CATEGORY_TOP, tag_id)
        child = store.get(EntityKind.CATEGORY_CHILD, f"child#{tag_id}")
        assert top is not None and child is not None
        assert top != child
        assert loader.categories[child]["parent_category_id"] == top
        assert loader.categories[child]["description"] == f"About tag {tag_id}"
        assert "parent_category_id" not in loader.categories[top]

    # position order: tag 2 first
    assert [c["id"] for c in loader.categories.values()] == [2, 1, "child#2", "child#1"]


def test_posts_before_categories_is_fatal(config, store):
    config.save_report = True
    orchestrator = make_orchestrator(config, store)
    orchestrator.run(SourceEntity.USERS)

    with mock.patch.object(orchestrator, "_import_categories"):
        with pytest.raises(CategoryNotMigratedError):
            orchestrator.run_migration()

    assert orchestrator.run_report.status == MigrationStatus.FAILED
    reports = list((Path(config.output_dir) / "logs").glob("migration_report_*.json"))
    assert len(reports) == 1
    report = json.loads(reports[0].read_text())
    assert report["status"] == "failed"
    assert report["errors"][0]["error_type"] == "CategoryNotMigratedError"


def test_interrupted_run_resumes(config, tmp_path):
    path = tmp_path / "resume.jsonl"
    source = build_source()

    with JSONLMappingStore(path) as store:
        loader = FakeLoader(store, reject={"posts": {30}})
        make_orchestrator(config, store, extractor=source, loader=loader).run_migration()
        assert store.get(EntityKind.POST, 30) is None

    with JSONLMappingStore(path) as store:
        loader = FakeLoader(store)
        run = make_orchestrator(config, store, extractor=source, loader=loader).run_migration()

        assert loader.users == []
        assert loader.categories == {}
        assert [p["id"] for p in loader.posts.values()] == [30]
        assert store.get(EntityKind.POST, 30) is not None
        assert run.status == MigrationStatus.COMPLETED


def test_posts_batch_with_missing_topic_is_not_skipped(config, store):
    store.put(EntityKind.CATEGORY_CHILD, "child#1", 602)
    store.put(EntityKind.POST, 10, 900)
    store.put(EntityKind.POST, 11, 901)
    loader = FakeLoader(store)
    loader.topics[900] = 77
    source = FakeExtractor(posts=[make_post(10, 100, 10), make_post(11, 100, 10)])

    step = make_orchestrator(config, store, extractor=source, loader=loader).run(SourceEntity.POSTS)

    assert step.batches_skipped == 0
    assert step.records_already_mapped == 2
    assert store.lookup_topic_by_first_post(10) == {"topic_id": 77, "post_id": 900}
