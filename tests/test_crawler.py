import asyncio
import io

from pypdf import PdfReader, PdfWriter

from qb_harvest.config import CHOICE_ANALYSIS, IMAGE_DIAGNOSIS, KEY_POINTS, build_config
from qb_harvest.crawler import (
    assemble_document,
    build_resolver,
    encode_document,
    harvest,
    write_document,
)
from qb_harvest.document import (
    EXPLANATION_IMAGE_ERROR,
    EmptyCell,
    ErrorBlock,
    ImageBlock,
    ImageGrid,
)
from qb_harvest.images import HttpImageFetcher, ImageResolver, ScreenshotCapturer
from qb_harvest.models import ExplanationRecord, Item, Section

from helpers import (
    FakeHttp,
    FakeResponse,
    FakeSession,
    answer_page,
    fast_timings,
    png_bytes,
    question_page,
)


def make_config(variant="continuous", item_count=3, **overrides):
    return build_config(
        variant,
        start_location="https://app.example/q/1",
        item_count=item_count,
        output_name="test",
        timings=fast_timings(),
        **overrides,
    )


def simple_item(ordinal, text="本文"):
    explanation = ExplanationRecord(
        sections={KEY_POINTS: Section(KEY_POINTS, text)}, correct_answer="a"
    )
    return Item(ordinal=ordinal, explanation=explanation)


def reference_pdf(pages):
    writer = PdfWriter()
    for _ in range(pages):
        writer.add_blank_page(width=200, height=200)
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


def test_harvests_items_in_order_without_advancing_past_last():
    config = make_config(item_count=3)
    pages = [
        (question_page(number=str(n)), answer_page({KEY_POINTS: f"要点{n}"}, correct="a"))
        for n in range(1, 4)
    ]
    session = FakeSession(pages + [(question_page(number="4"), None)], config.selectors)

    state = asyncio.run(harvest(session, config))

    assert [item.ordinal for item in state.items] == [1, 2, 3]
    assert [item.explanation.section(KEY_POINTS).text for item in state.items] == [
        "要点1",
        "要点2",
        "要点3",
    ]
    assert session.index == 2
    assert not state.ended_early


def test_empty_explanation_marks_end_of_content():
    config = make_config(item_count=5)
    session = FakeSession(
        [
            (question_page(), answer_page({KEY_POINTS: "要点"}, correct="a")),
            (question_page(number="2"), answer_page()),
            (question_page(number="3"), answer_page({KEY_POINTS: "届かない"}, correct="b")),
        ],
        config.selectors,
    )

    state = asyncio.run(harvest(session, config))

    assert len(state.items) == 1
    assert not state.ended_early


def test_missing_explanation_skips_only_that_item():
    config = make_config(item_count=3)
    session = FakeSession(
        [
            (question_page(), answer_page({KEY_POINTS: "一"}, correct="a")),
            (question_page(number="2", next_button=True), None),
            (question_page(number="3"), answer_page({KEY_POINTS: "三"}, correct="c")),
        ],
        config.selectors,
    )

    state = asyncio.run(harvest(session, config))

    assert [item.ordinal for item in state.items] == [1, 3]
    assert state.skipped == 1


def test_failed_advance_keeps_partial_results():
    config = make_config(item_count=5)
    session = FakeSession(
        [
            (question_page(), answer_page({KEY_POINTS: "一"}, correct="a")),
            (question_page(number="2"), answer_page({KEY_POINTS: "二"}, correct="b", next_button=False)),
        ],
        config.selectors,
    )

    state = asyncio.run(harvest(session, config))

    assert len(state.items) == 2
    assert state.ended_early


def test_content_never_ready_skips_each_item():
    config = make_config()
    state = asyncio.run(harvest(FakeSession([], config.selectors), config))
    assert state.items == []
    assert state.skipped == 3
    assert not state.ended_early


def test_slow_readiness_marker_does_not_lose_the_item():
    config = make_config(item_count=1)
    question = question_page().replace('class="header"', 'class="masthead"')
    session = FakeSession(
        [(question, answer_page({KEY_POINTS: "要点"}, correct="a"))], config.selectors
    )

    state = asyncio.run(harvest(session, config))

    assert [item.ordinal for item in state.items] == [1]
    assert state.skipped == 0


def test_problem_capture_in_standard_variant():
    config = make_config("standard", item_count=1)
    session = FakeSession(
        [
            (
                question_page(number="7", text="問題の本文", choices=["a", "b"], problem_id="42"),
                answer_page({CHOICE_ANALYSIS: "解説"}, correct="b"),
            )
        ],
        config.selectors,
    )

    state = asyncio.run(harvest(session, config))

    problem = state.items[0].problem
    assert problem.number == "7"
    assert problem.problem_id == "42"
    assert problem.question_text == "問題の本文"
    assert problem.choices == ["a", "b"]


def test_reference_is_carried_forward_when_enabled():
    config = make_config("reference", item_count=2, carry_reference_forward=True)
    session = FakeSession(
        [
            (question_page(), answer_page({KEY_POINTS: "一"}, correct="a", reference={"title": "基本", "text": "事項"})),
            (question_page(number="2"), answer_page({KEY_POINTS: "二"}, correct="b")),
        ],
        config.selectors,
    )

    state = asyncio.run(harvest(session, config))

    assert state.items[0].reference.title == "基本"
    assert state.items[1].reference is state.items[0].reference


def test_reference_not_carried_by_default():
    config = make_config("reference", item_count=2)
    session = FakeSession(
        [
            (question_page(), answer_page({KEY_POINTS: "一"}, correct="a", reference={"title": "基本", "text": "事項"})),
            (question_page(number="2"), answer_page({KEY_POINTS: "二"}, correct="b")),
        ],
        config.selectors,
    )

    state = asyncio.run(harvest(session, config))

    assert state.items[1].reference is None


def test_images_are_resolved_with_session_cookies():
    url = "https://cdn.example/ct.png"
    config = make_config(item_count=1)
    session = FakeSession(
        [(question_page(), answer_page(images=[url, "https://cdn.example/gone.png"], correct="a"))],
        config.selectors,
    )
    http = FakeHttp({url: FakeResponse(png_bytes(300, 100))})
    resolver = ImageResolver(fetcher=HttpImageFetcher(session=http))

    state = asyncio.run(harvest(session, config, resolver))

    found, gone = state.items[0].explanation.section(IMAGE_DIAGNOSIS).images
    assert found.is_inline and found.width == 300
    assert gone.embeddable is None
    assert all(call[1]["Cookie"] == "session=abc; csrf=xyz" for call in http.calls)


def test_unreachable_image_becomes_error_cell_in_its_grid_slot():
    first, gone, second = (
        "https://cdn.example/a.png",
        "https://cdn.example/gone.png",
        "https://cdn.example/b.png",
    )
    config = make_config(item_count=1)
    session = FakeSession(
        [(question_page(), answer_page(images=[first, gone, second], correct="a"))],
        config.selectors,
    )
    http = FakeHttp(
        {first: FakeResponse(png_bytes(300, 100)), second: FakeResponse(png_bytes(200, 100))}
    )
    resolver = ImageResolver(fetcher=HttpImageFetcher(session=http))

    state = asyncio.run(harvest(session, config, resolver))
    description = assemble_document(state.items, config)

    (grid,) = [block for block in description.blocks if isinstance(block, ImageGrid)]
    assert isinstance(grid.rows[0][0], ImageBlock)
    assert grid.rows[0][1] == ErrorBlock(EXPLANATION_IMAGE_ERROR)
    assert isinstance(grid.rows[1][0], ImageBlock)
    assert grid.rows[1][1] == EmptyCell()


def test_relative_image_sources_are_fetched_against_the_page():
    absolute = "https://app.example/media/ct.png"
    config = make_config(item_count=1)
    session = FakeSession(
        [(question_page(), answer_page(images=["/media/ct.png"], correct="a"))],
        config.selectors,
    )
    http = FakeHttp({absolute: FakeResponse(png_bytes(120, 80))})
    resolver = ImageResolver(fetcher=HttpImageFetcher(session=http))

    state = asyncio.run(harvest(session, config, resolver))

    (image,) = state.items[0].explanation.section(IMAGE_DIAGNOSIS).images
    assert http.calls[0][0] == absolute
    assert image.is_inline and image.width == 120
    assert image.source == "/media/ct.png"


def test_build_resolver_follows_strategy():
    session = FakeSession([])
    fetch = build_resolver(session, make_config("continuous"))
    capture = build_resolver(session, make_config("merge"))
    assert isinstance(fetch.fetcher, HttpImageFetcher)
    assert isinstance(capture.capturer, ScreenshotCapturer)


def test_write_document_creates_pdf(tmp_path):
    config = make_config(output_root=tmp_path)
    path = write_document([simple_item(1), simple_item(2)], config)

    assert path == tmp_path / "test.pdf"
    assert len(PdfReader(str(path)).pages) == 2


def test_write_document_without_items_writes_nothing(tmp_path):
    config = make_config(output_root=tmp_path)
    assert write_document([], config) is None
    assert list(tmp_path.iterdir()) == []


def test_merge_interleaves_reference_groups(tmp_path):
    reference = tmp_path / "reference.pdf"
    reference.write_bytes(reference_pdf(8))
    config = make_config(
        "merge", output_root=tmp_path, reference_document_path=reference
    )
    description = assemble_document([simple_item(1), simple_item(2)], config)

    data = encode_document(description, config)

    assert len(PdfReader(io.BytesIO(data)).pages) == 10


def test_missing_reference_document_is_reported(tmp_path):
    config = make_config(
        "merge",
        output_root=tmp_path,
        reference_document_path=tmp_path / "absent.pdf",
    )
    assert write_document([simple_item(1)], config) is None
    assert not config.output_path.exists()
