"""
Tests for the sliding-window chunker
"""

import pytest

from acervo.services.chunking_service import SlidingWindowChunker, chunk_text, estimate_tokens


def words(n: int, prefix: str = "w") -> str:
    return " ".join(f"{prefix}{i}" for i in range(n))


class TestChunkText:
    def test_empty_and_whitespace_input(self):
        assert chunk_text("") == []
        assert chunk_text("  \n\t ") == []

    def test_short_text_is_single_chunk(self):
        assert chunk_text("uno dos tres", chunk_size=10, chunk_overlap=2) == ["uno dos tres"]

    def test_3000_tokens_gives_three_windows(self):
        chunks = chunk_text(words(3000), chunk_size=1200, chunk_overlap=200)

        assert len(chunks) == 3
        assert chunks[0].split()[0] == "w0"
        assert chunks[0].split()[-1] == "w1199"
        assert chunks[1].split()[0] == "w1000"
        assert chunks[2].split()[0] == "w2000"
        assert chunks[2].split()[-1] == "w2999"

    def test_consecutive_windows_overlap(self):
        chunks = chunk_text(words(25), chunk_size=10, chunk_overlap=3)
        for left, right in zip(chunks, chunks[1:]):
            assert left.split()[-3:] == right.split()[:3]

    def test_every_token_is_covered(self):
        chunks = chunk_text(words(57), chunk_size=10, chunk_overlap=4)
        seen = {t for c in chunks for t in c.split()}
        assert seen == set(words(57).split())

    def test_exact_fit_has_no_trailing_window(self):
        assert len(chunk_text(words(10), chunk_size=10, chunk_overlap=2)) == 1

    @pytest.mark.parametrize("overlap", [10, 11, -1])
    def test_invalid_overlap(self, overlap):
        with pytest.raises(ValueError):
            chunk_text("a b c", chunk_size=10, chunk_overlap=overlap)

    def test_opaque_token_goes_to_character_windows(self):
        blob = "x" * 100
        chunks = chunk_text(blob, chunk_size=10, chunk_overlap=2, max_tokens=8000)

        # window 40 chars, step 32
        assert [len(c) for c in chunks] == [40, 40, 36]
        assert "".join(c[:32] for c in chunks[:-1]) + chunks[-1] == blob

    def test_segments_never_exceed_ceiling(self):
        # Few very long tokens: the token window is far above the ceiling
        text = " ".join(["y" * 500] * 20)
        chunks = chunk_text(text, chunk_size=10, chunk_overlap=2, max_tokens=100)

        assert chunks
        assert all(estimate_tokens(c) <= 100 for c in chunks)

    def test_large_opaque_token_respects_ceiling(self):
        chunks = chunk_text("z" * 50_000, chunk_size=1200, chunk_overlap=200, max_tokens=1000)
        assert all(estimate_tokens(c) <= 1000 for c in chunks)


class TestEstimateTokens:
    def test_four_characters_per_token(self):
        assert estimate_tokens("") == 0
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2


class TestSlidingWindowChunker:
    def test_rejects_non_positive_size(self):
        with pytest.raises(ValueError):
            SlidingWindowChunker(chunk_size=0, chunk_overlap=0)
