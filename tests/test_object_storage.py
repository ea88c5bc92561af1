import os

from infra.storage.object_storage import ObjectStorage, object_key_for


def test_keys_are_unique_per_upload():
    a = object_key_for("meals/1", "image/jpeg")
    b = object_key_for("meals/1", "image/jpeg")
    assert a != b
    assert a.startswith("meals/1/") and a.endswith(".jpg")
    assert object_key_for("receipts/1", "application/pdf").endswith(".bin")


def test_local_delete_leaves_other_uploads_of_same_bytes(tmp_path):
    storage = ObjectStorage(root=str(tmp_path), base_url="http://media.test")
    data = b"\xff\xd8same-photo"
    first = storage.put_bytes(object_key_for("meals/1", "image/jpeg"), data, "image/jpeg")
    second = storage.put_bytes(object_key_for("meals/1", "image/jpeg"), data, "image/jpeg")

    assert storage.delete_url(first) is True

    assert not os.path.exists(tmp_path / storage.key_from_url(first))
    assert (tmp_path / storage.key_from_url(second)).read_bytes() == data


def test_delete_foreign_or_missing_url(tmp_path):
    storage = ObjectStorage(root=str(tmp_path), base_url="http://media.test")
    assert storage.delete_url("https://elsewhere.test/x.jpg") is False
    assert storage.delete_url("http://media.test/meals/1/nope.jpg") is False
