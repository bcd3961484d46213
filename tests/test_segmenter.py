import pytest

from doc_translator.errors import ExtractionFailed, UnsupportedFormat
from doc_translator.services.segmenter import Segmenter, split_into_pages, split_sentences


def _squash(text: str) -> str:
    return "".join(text.split())


def _sample_text() -> str:
    paragraphs = []
    for i in range(40):
        sentences = " ".join(f"Paragraph {i} sentence {j} is here." for j in range(i % 7 + 1))
        paragraphs.append(sentences)
    # 예산을 크게 넘는 문단 하나
    paragraphs.insert(10, " ".join(f"Long sentence number {k} keeps going." for k in range(30)))
    return "\n\n".join(paragraphs)


def test_pages_are_numbered_contiguously_and_reproduce_source() -> None:
    text = _sample_text()

    pages = split_into_pages(text, max_chars=300)

    assert [p.page_number for p in pages] == list(range(1, len(pages) + 1))
    assert _squash("".join(p.text for p in pages)) == _squash(text)


def test_pages_respect_budget() -> None:
    pages = split_into_pages(_sample_text(), max_chars=300)

    assert len(pages) > 1
    assert all(len(p.text) <= 300 for p in pages)


def test_paragraphs_are_packed_until_budget() -> None:
    text = "aaaa\n\nbbbb\n\ncccc"

    pages = split_into_pages(text, max_chars=10)

    # "aaaa\n\nbbbb" 는 10자, "cccc" 를 더하면 넘친다
    assert [p.text for p in pages] == ["aaaa\n\nbbbb", "cccc"]


def test_oversized_paragraph_flushes_buffer_and_splits_on_sentences() -> None:
    text = "Intro.\n\nOne two three. Four five six. Seven eight nine.\n\nTail."

    pages = split_into_pages(text, max_chars=30)

    assert pages[0].text == "Intro."
    assert pages[1].text == "One two three. Four five six."
    # 남은 문장 버퍼 뒤에 다음 문단이 이어진다
    assert pages[2].text == "Seven eight nine.\n\nTail."


def test_single_indivisible_sentence_is_its_own_page() -> None:
    long_sentence = "x" * 50 + "."
    text = f"short\n\n{long_sentence} Next."

    pages = split_into_pages(text, max_chars=20)

    assert [p.text for p in pages] == ["short", long_sentence, "Next."]


def test_cjk_sentences_split_without_spaces() -> None:
    assert split_sentences("第一句。第二句！第三句？") == ["第一句。", "第二句！", "第三句？"]


def test_blank_text_yields_no_pages() -> None:
    assert split_into_pages("  \n\n \n\t\n") == []


def test_invalid_budget_rejected() -> None:
    with pytest.raises(ValueError):
        split_into_pages("text", max_chars=0)


def test_segment_txt_file() -> None:
    segmenter = Segmenter(max_chars=15)

    pages = segmenter.segment("notes.TXT", "첫 번째 문단입니다\n\n두 번째 문단입니다".encode("utf-8"))

    assert [p.text for p in pages] == ["첫 번째 문단입니다", "두 번째 문단입니다"]


def test_segment_empty_txt_file_returns_no_pages() -> None:
    assert Segmenter().segment("empty.txt", b"\n\n  \n") == []


def test_segment_rejects_unknown_extension() -> None:
    with pytest.raises(UnsupportedFormat):
        Segmenter().segment("slides.key", b"data")

    with pytest.raises(UnsupportedFormat):
        Segmenter().segment("README", b"data")


def test_segment_wraps_decode_errors() -> None:
    with pytest.raises(ExtractionFailed):
        Segmenter().segment("broken.txt", b"\xff\xfe\xfa invalid utf-8 \xc3")


def test_segment_wraps_corrupt_pdf() -> None:
    with pytest.raises(ExtractionFailed) as exc_info:
        Segmenter().segment("broken.pdf", b"this is not a pdf")

    assert exc_info.value.file_name == "broken.pdf"
