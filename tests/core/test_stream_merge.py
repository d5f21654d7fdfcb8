from llm_service.core.stream_merge import ChunkMerger


def test_verbatim_mode_appends_everything() -> None:
    merger = ChunkMerger(dedupe=False)
    assert merger.push("ha") == "ha"
    assert merger.push("ha") == "ha"
    assert merger.text == "haha"


def test_dedupe_drops_full_resend() -> None:
    merger = ChunkMerger(dedupe=True)
    merger.push("Hello")
    assert merger.push("Hello") == ""
    assert merger.text == "Hello"


def test_dedupe_keeps_suffix_of_extension() -> None:
    merger = ChunkMerger(dedupe=True)
    assert merger.push("Hello") == "Hello"
    assert merger.push("Hello, world") == ", world"
    assert merger.text == "Hello, world"


def test_dedupe_removes_overlap() -> None:
    merger = ChunkMerger(dedupe=True)
    merger.push("Hello, world")
    assert merger.push("world!") == "!"
    assert merger.text == "Hello, world!"


def test_dedupe_disjoint_fragment_is_appended() -> None:
    merger = ChunkMerger(dedupe=True)
    merger.push("abc")
    assert merger.push("xyz") == "xyz"
    assert merger.text == "abcxyz"


def test_empty_fragment_is_ignored() -> None:
    merger = ChunkMerger(dedupe=True)
    assert merger.push("") == ""
    assert merger.text == ""
