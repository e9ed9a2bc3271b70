"""Unit tests for lexical path jailing."""

import pytest
from domain.identity import Identity
from domain.path_resolver import home_directory, is_contained, jail, storage_path


class TestJail:
    """Test cases for jail()."""

    def test_joins_relative_path(self):
        assert jail("/data", "a/b.txt") == "/data/a/b.txt"

    def test_empty_path_resolves_to_root(self):
        assert jail("/data", "") == "/data"
        assert jail("/data/", "") == "/data"
        assert jail("/", "") == "/"

    def test_dot_segments_are_cleaned(self):
        assert jail("/data", "./a/./b/../c") == "/data/a/c"

    def test_absolute_path_is_rerooted(self):
        assert jail("/data", "/etc/passwd") == "/data/etc/passwd"
        assert jail("/data", "//etc/passwd") == "/data/etc/passwd"

    def test_parent_segments_cannot_escape(self):
        assert jail("/data", "../../etc/passwd") == "/data/etc/passwd"
        assert jail("/data", "a/../../..") == "/data"
        assert jail("/data", "/../..//../x") == "/data/x"

    @pytest.mark.parametrize("user_path", [
        "..",
        "../",
        "../../../../../../",
        "/..",
        "a/../../b",
        "....//..//x",
        "./../.././../etc",
        "//..//..//",
        "a/b/c/../../../../../../d",
        "\\..\\..",
    ])
    def test_result_always_under_root(self, user_path):
        result = jail("/srv/data", user_path)
        assert is_contained("/srv/data", result)


class TestIsContained:
    def test_root_contains_itself(self):
        assert is_contained("/data", "/data")

    def test_sibling_with_common_prefix_is_not_contained(self):
        assert not is_contained("/data", "/data2/x")

    def test_filesystem_root(self):
        assert is_contained("/", "/anything")


class TestStoragePath:
    def test_home_directory_layout(self):
        assert home_directory(Identity("ourense")) == "/o/ourense"

    def test_storage_path(self):
        assert storage_path("/data", Identity("test"), "myblob") == "/data/t/test/myblob"

    def test_storage_path_cannot_leave_home(self):
        path = storage_path("/data", Identity("test"), "../../other/o/other/secret")
        assert is_contained("/data/t/test", path)

    def test_username_with_traversal_stays_under_data_dir(self):
        path = storage_path("/data", Identity("../../etc"), "passwd")
        assert is_contained("/data", path)

    def test_empty_username_is_rejected(self):
        with pytest.raises(ValueError):
            Identity("")
