"""Unit tests for the favorites store."""

import configparser

import pytest
from pydantic import ValidationError

from qup.models.config import Favorite
from qup.storage.favorites import FavoritesStore


@pytest.fixture
def store(tmp_path):
    return FavoritesStore(tmp_path / "qup.ini")


@pytest.fixture
def favorite():
    return Favorite(
        name="Tool",
        local_directory="/opt/tool",
        url="https://example.com/tool/qup.txt",
        operating_system="Debian 12 AMD64",
        download_frequency=30,
        install_automatically=True,
    )


def test_save_and_get(store, favorite):
    store.save(favorite)

    assert store.get("Tool") == favorite
    assert store.get("Other") is None


def test_group_layout(store, favorite):
    store.save(favorite)

    parser = configparser.ConfigParser()
    parser.read(store.config_file_path)
    group = parser["favorite-Tool"]
    assert group["local-directory"] == "/opt/tool"
    assert group["operating-system"] == "Debian 12 AMD64"
    assert group["download-frequency"] == "30"
    assert group["install-automatically"] == "true"


def test_list_is_sorted_and_skips_other_sections(store, favorite):
    store.config_file_path.write_text("[settings]\nchunk_size = 4096\n")
    store.save(favorite)
    store.save(favorite.model_copy(update={"name": "alpha"}))

    assert [f.name for f in store.list()] == ["alpha", "Tool"]


def test_replace(store, favorite):
    store.save(favorite)
    store.save(favorite.model_copy(update={"download_frequency": 0}))

    assert store.get("Tool").download_frequency == 0
    assert len(store.list()) == 1


def test_delete(store, favorite):
    store.save(favorite)

    assert store.delete("Tool") is True
    assert store.delete("Tool") is False
    assert store.list() == []


def test_invalid_group_is_skipped(store, favorite):
    store.save(favorite)
    with open(store.config_file_path, "a") as f:
        f.write("\n[favorite-broken]\nurl = \n")

    assert [f.name for f in store.list()] == ["Tool"]


def test_to_parameters(favorite):
    parameters = favorite.to_parameters()

    assert parameters.product == "Tool"
    assert parameters.destination == "/opt/tool"
    assert parameters.platform == "Debian 12 AMD64"
    assert parameters.auto_install is True
    assert parameters.download_frequency == 30


@pytest.mark.parametrize(
    "update",
    [{"name": ""}, {"name": "a/b"}, {"url": ""}, {"download_frequency": -1}],
)
def test_validation(favorite, update):
    with pytest.raises(ValidationError):
        Favorite(**{**favorite.model_dump(), **update})
