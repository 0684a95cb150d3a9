import json
from unittest import mock

from conftest import FakeLoader, make_post, make_user
from flarum_migrator.models.migration import EntityKind
from flarum_migrator.models.record import RecordOutcome, SideEffectOutcome, Skip
from flarum_migrator.services.mapping_store import JSONLMappingStore
from flarum_migrator.services.topics import PostMapper
from flarum_migrator.services.transformer import EntityMapper


def test_created_records_are_mapped(store, loader):
    mapper = EntityMapper(store)
    result = loader.create_users([make_user(1), make_user(2)], mapper.map_user, total=2)

    assert result.total_created == 2
    assert store.get(EntityKind.USER, 1) is not None
    assert store.get(EntityKind.USER, 2) is not None
    assert loader.users[0]["name"] == "user1"


def test_already_mapped_record_is_a_no_op(store, loader):
    store.put(EntityKind.USER, 1, 555)
    transform = mock.Mock(side_effect=EntityMapper(store).map_user)

    result = loader.create_users([make_user(1), make_user(2)], transform)

    assert [r.outcome for r in result.results] == [RecordOutcome.ALREADY_MAPPED, RecordOutcome.CREATED]
    assert result.results[0].target_id == 555
    assert transform.call_count == 1
    assert len(loader.users) == 1


def test_rejected_record_does_not_stop_the_batch(store):
    loader = FakeLoader(store, reject={"users": {2}})
    mapper = EntityMapper(store)

    result = loader.create_users([make_user(1), make_user(2), make_user(3)], mapper.map_user)

    assert result.total_created == 2
    assert result.total_failed == 1
    assert result.errors[0]["record_id"] == "2"
    assert result.errors[0]["error_code"] == "422"
    assert store.get(EntityKind.USER, 2) is None
    assert store.get(EntityKind.USER, 3) is not None


def test_skip_creates_nothing(store, loader):
    result = loader.create_posts([make_post(11, 1, 10)], lambda post: Skip("no parent"))

    assert result.total_skipped == 1
    assert result.results[0].reason == "no parent"
    assert loader.posts == {}
    assert store.count() == 0


def test_opening_post_records_topic_mapping(store, loader):
    store.put(EntityKind.CATEGORY_CHILD, "child#1", 602)
    mapper = PostMapper(store)

    result = loader.create_posts([make_post(10, 1, 10), make_post(11, 1, 10)], mapper.map)

    assert result.total_created == 2
    opener_post = store.get(EntityKind.POST, 10)
    topic = store.get(EntityKind.TOPIC, 10)
    assert topic == opener_post + 50000
    assert store.get(EntityKind.TOPIC, 11) is None
    reply_post = store.get(EntityKind.POST, 11)
    assert loader.posts[reply_post]["topic_id"] == topic


def test_avatar_attached_when_file_exists(store, loader, tmp_path):
    (tmp_path / "a.png").write_bytes(b"png")
    mapper = EntityMapper(store, avatar_dir=str(tmp_path))

    result = loader.create_users([make_user(1, avatar_url="a.png")], mapper.map_user)

    assert result.results[0].side_effect == SideEffectOutcome.APPLIED
    assert loader.avatars == [(store.get(EntityKind.USER, 1), str(tmp_path / "a.png"))]


def test_missing_avatar_file_is_ignored(store, loader, tmp_path):
    mapper = EntityMapper(store, avatar_dir=str(tmp_path))

    result = loader.create_users([make_user(1, avatar_url="missing.png")], mapper.map_user)

    assert result.results[0].outcome == RecordOutcome.CREATED
    assert result.results[0].side_effect == SideEffectOutcome.IGNORED
    assert loader.avatars == []


def test_failed_avatar_upload_is_ignored(store, tmp_path):
    (tmp_path / "a.png").write_bytes(b"png")
    loader = FakeLoader(store, avatar_error=OSError("disk full"))
    mapper = EntityMapper(store, avatar_dir=str(tmp_path))

    result = loader.create_users([make_user(1, avatar_url="a.png")], mapper.map_user)

    assert result.results[0].outcome == RecordOutcome.CREATED
    assert result.results[0].side_effect == SideEffectOutcome.IGNORED
    assert store.get(EntityKind.USER, 1) is not None


def test_opener_post_and_topic_mappings_share_one_line(tmp_path):
    path = tmp_path / "ids.jsonl"
    with JSONLMappingStore(path) as store:
        store.put(EntityKind.CATEGORY_CHILD, "child#1", 602)
        loader = FakeLoader(store)
        loader.create_posts([make_post(10, 1, 10)], PostMapper(store).map)

    lines = path.read_text().splitlines()
    assert len(lines) == 2
    group = json.loads(lines[1])["mappings"]
    assert [(m["kind"], m["source_id"]) for m in group] == [("post", "10"), ("topic", "10")]


def test_opener_without_topic_mapping_is_repaired(store, loader):
    store.put(EntityKind.CATEGORY_CHILD, "child#1", 602)
    store.put(EntityKind.POST, 10, 900)
    loader.topics[900] = 77

    result = loader.create_posts([make_post(10, 1, 10), make_post(11, 1, 10)], PostMapper(store).map)

    assert [r.outcome for r in result.results] == [RecordOutcome.ALREADY_MAPPED, RecordOutcome.CREATED]
    assert store.get(EntityKind.TOPIC, 10) == 77
    reply = store.get(EntityKind.POST, 11)
    assert loader.posts[reply]["topic_id"] == 77


def test_unresolvable_opener_topic_leaves_reply_skipped(store, loader):
    store.put(EntityKind.CATEGORY_CHILD, "child#1", 602)
    store.put(EntityKind.POST, 10, 900)

    result = loader.create_posts([make_post(10, 1, 10), make_post(11, 1, 10)], PostMapper(store).map)

    assert [r.outcome for r in result.results] == [RecordOutcome.ALREADY_MAPPED, RecordOutcome.SKIPPED]
    assert store.get(EntityKind.TOPIC, 10) is None
