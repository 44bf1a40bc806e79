import pytest
from clyde.clyde_serialize import deserialize, detect_format

def test_json_is_sniffed_from_leading_brace():
    out = deserialize('{"files": {"a.rs": ""}, "items": []}')
    assert out == {"files": {"a.rs": ""}, "items": []}

def test_yaml_by_path():
    out = deserialize("files:\n  a.rs: |\n    fn main() {}\n", path="model.yml")
    assert out == {"files": {"a.rs": "fn main() {}\n"}}

def test_bytes_are_decoded():
    data = "a: 1\n".encode("utf-8")
    assert deserialize(data, fmt="yaml") == {"a": 1}

@pytest.mark.parametrize(
    "path,expected",
    [
        ("model.json", "json"),
        ("model.yaml", "yaml"),
        ("MODEL.YML", "yaml"),
        ("model.txt", None),
    ],
)
def test_detect_format_from_path(path, expected):
    assert detect_format(path) == expected

def test_detect_format_falls_back_to_sniffing():
    assert detect_format("model.txt", "[1, 2]") == "json"
    assert detect_format(None, "a: 1") == "yaml"

def test_malformed_input_raises_value_error():
    with pytest.raises(ValueError):
        deserialize("{not json", fmt="json")
    with pytest.raises(ValueError):
        deserialize("a: [unclosed", fmt="yaml")

def test_unsupported_format_is_rejected():
    with pytest.raises(ValueError):
        deserialize("<xml/>", fmt="xml")
