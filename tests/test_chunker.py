"""Unit tests for document chunking."""

import pytest

from docvector.chunker import ChunkingOptions, chunk_text
from docvector.errors import InvalidConfiguration

PARAGRAPH_TEXT = """Safety data sheet for the industrial solvent blend used in line three.

Store the container tightly closed in a dry and well-ventilated place.

Keep away from heat, hot surfaces, sparks, open flames and other ignition sources.

In case of skin contact, wash with plenty of water and remove contaminated clothing.

Dispose of contents in accordance with local and national regulations."""


def _paragraphs(text):
    return [p.strip() for p in text.split("\n\n") if p.strip()]


class TestValidation:

    @pytest.mark.parametrize("size,overlap", [(0, 0), (-5, 0), (100, -1), (100, 100), (100, 150)])
    def test_rejects_nonsensical_sizes(self, size, overlap):
        with pytest.raises(InvalidConfiguration):
            chunk_text("some text", ChunkingOptions(chunk_size=size, chunk_overlap=overlap))

    def test_invalid_configuration_is_a_value_error(self):
        with pytest.raises(ValueError):
            ChunkingOptions(chunk_size=10, chunk_overlap=10).validate()

    def test_blank_text_yields_no_chunks(self):
        assert chunk_text("   \n\n  \t", ChunkingOptions(chunk_size=100, chunk_overlap=10)) == []


class TestParagraphMode:

    def test_two_paragraphs_that_do_not_fit_together(self):
        p1 = "The first paragraph is exactly fifty characters!!."
        p2 = "The other paragraph also has exactly fifty chars.."
        assert len(p1) == 50 and len(p2) == 50

        chunks = chunk_text(f"{p1}\n\n{p2}", ChunkingOptions(chunk_size=80, chunk_overlap=10))

        assert [c.chunk_index for c in chunks] == [0, 1]
        assert chunks[0].content == p1
        assert chunks[1].content == p1[-10:] + "\n\n" + p2
        assert chunks[1].content.endswith(p2)

    def test_small_paragraphs_are_grouped(self):
        chunks = chunk_text("one\n\ntwo\n\nthree", ChunkingOptions(chunk_size=100, chunk_overlap=10))
        assert len(chunks) == 1
        assert chunks[0].content == "one\n\ntwo\n\nthree"
        assert chunks[0].metadata == {"chunk_index": 0, "type": "paragraph_grouped", "length": 15}

    def test_indices_are_contiguous(self):
        chunks = chunk_text(PARAGRAPH_TEXT, ChunkingOptions(chunk_size=120, chunk_overlap=20))
        assert len(chunks) > 1
        assert [c.chunk_index for c in chunks] == list(range(len(chunks)))
        assert [c.metadata["chunk_index"] for c in chunks] == list(range(len(chunks)))

    def test_every_paragraph_lands_in_a_chunk(self):
        chunks = chunk_text(PARAGRAPH_TEXT, ChunkingOptions(chunk_size=120, chunk_overlap=20))
        for paragraph in _paragraphs(PARAGRAPH_TEXT):
            assert any(paragraph in c.content for c in chunks), paragraph

    def test_no_overlap_starts_fresh(self):
        chunks = chunk_text(PARAGRAPH_TEXT, ChunkingOptions(chunk_size=120, chunk_overlap=0))
        assert [c.content for c in chunks] == _paragraphs(PARAGRAPH_TEXT)

    def test_whitespace_only_lines_split_paragraphs(self):
        chunks = chunk_text("alpha\n   \nbeta", ChunkingOptions(chunk_size=5, chunk_overlap=0))
        assert [c.content for c in chunks] == ["alpha", "beta"]

    def test_oversized_paragraph_is_kept_whole(self):
        long_paragraph = "word " * 60
        chunks = chunk_text(f"short intro\n\n{long_paragraph}", ChunkingOptions(chunk_size=50, chunk_overlap=0))
        assert chunks[-1].content == long_paragraph.strip()
        assert len(chunks[-1].content) > 50

    def test_overlap_skipped_when_buffer_is_not_longer_than_overlap(self):
        chunks = chunk_text("tiny\n\n" + "x" * 30, ChunkingOptions(chunk_size=20, chunk_overlap=10))
        assert [c.content for c in chunks] == ["tiny", "x" * 30]


class TestCharacterMode:

    def options(self, size, overlap=0):
        return ChunkingOptions(chunk_size=size, chunk_overlap=overlap, preserve_paragraphs=False)

    def test_retracts_to_space_in_last_fifth_of_window(self):
        chunks = chunk_text("abcdefghij klm", self.options(12))
        assert [c.content for c in chunks] == ["abcdefghij", "klm"]
        assert chunks[0].metadata["end_index"] == 10
        assert chunks[0].metadata["type"] == "character_based"

    def test_hard_cut_when_space_is_too_early(self):
        chunks = chunk_text("ab cdefghijklmnop", self.options(10))
        assert [c.content for c in chunks] == ["ab cdefghi", "jklmnop"]

    def test_overlap_moves_next_window_back(self):
        chunks = chunk_text("abcdefghij klm", self.options(12, overlap=2))
        assert [c.content for c in chunks] == ["abcdefghij", "ij klm"]
        assert chunks[1].metadata["start_index"] == 8

    def test_windows_cover_the_whole_text(self):
        text = " ".join(f"token{i}" for i in range(200))
        chunks = chunk_text(text, self.options(97, overlap=13))

        assert [c.chunk_index for c in chunks] == list(range(len(chunks)))
        assert chunks[0].metadata["start_index"] == 0
        assert chunks[-1].metadata["end_index"] == len(text)
        for prev, nxt in zip(chunks, chunks[1:]):
            assert nxt.metadata["start_index"] <= prev.metadata["end_index"]
            assert nxt.metadata["start_index"] > prev.metadata["start_index"]

    def test_stops_once_the_end_is_reached(self):
        chunks = chunk_text("x" * 25, self.options(10, overlap=5))
        assert chunks[-1].metadata["end_index"] == 25
        assert len(chunks) == 4
