import io
import json
from pathlib import Path

import httpx
import pytest

from app.models.schemas import PipelineConfig, StorageBundle
from app.utils.config import ConfigurationError, Settings
from domains.document_pipeline.channels import CancelScope
from domains.document_pipeline.destinations import LocalDestination, build_destination
from domains.document_pipeline.errors import (
    BundleNotFoundError,
    CleanupError,
    ConversionError,
    ConversionTimeoutError,
)
from domains.document_pipeline.stages.bundle import BundleStage
from domains.document_pipeline.stages.chatgpt import ChatGPTStage, strip_markdown_fence
from domains.document_pipeline.stages.mathpix import MathpixStage
from domains.document_pipeline.stages.obsidian import ObsidianStage, format_note
from domains.document_pipeline.stages.registry import STAGE_TYPES, build_stages, create_stage
from domains.document_pipeline.stages.temp_storage import TempStorageStage, staged_path
from tests.fakes import make_document

API = "https://mathpix.test/v3/pdf"


# Markdown fence stripping ---------------------------------------------------------


@pytest.mark.parametrize(
    "text, expected",
    [
        ("```markdown\n# Title\n\nBody\n```", "# Title\n\nBody"),
        ("  ```markdown\n# Title\n```  \n", "# Title"),
        ("```markdown\n# Unterminated", "# Unterminated"),
        ("# Plain\n", "# Plain\n"),
        ("```python\nprint()\n```", "```python\nprint()\n```"),
    ],
)
def test_strip_markdown_fence(text, expected):
    assert strip_markdown_fence(text) == expected


def test_strip_markdown_fence_is_idempotent():
    once = strip_markdown_fence("```markdown\n# Title\n```")
    assert strip_markdown_fence(once) == once


# Mathpix ------------------------------------------------------------------------


def mathpix_stage(handler, timeout=1.0, poll_interval=0.01):
    stage = MathpixStage(
        app_id="id",
        app_key="key",
        poll_interval=poll_interval,
        timeout=timeout,
        client=httpx.Client(transport=httpx.MockTransport(handler)),
        api_url=API,
    )
    stage.initialize(CancelScope())
    return stage


def test_mathpix_converts_pdf_to_markdown():
    polls = []

    def handler(request: httpx.Request):
        assert request.headers["app_id"] == "id"
        assert request.headers["app_key"] == "key"
        if request.method == "POST":
            assert b'name="file"' in request.content
            return httpx.Response(200, json={"pdf_id": "p1"})
        if request.url.path.endswith("/p1.md"):
            return httpx.Response(200, text="# Converted")
        polls.append(request.url.path)
        status = "completed" if len(polls) >= 2 else "split"
        return httpx.Response(200, json={"status": status})

    stage = mathpix_stage(handler)
    output = stage.process(make_document("a"), io.BytesIO(b"%PDF-1.4"))

    assert output.read() == b"# Converted"
    assert len(polls) == 2


def test_mathpix_upload_error_is_a_conversion_error():
    def handler(request):
        return httpx.Response(200, json={"error": "bad pdf", "error_info": {"id": "e1", "message": "corrupt"}})

    stage = mathpix_stage(handler)

    with pytest.raises(ConversionError, match="ErrorInfo.ID=e1"):
        stage.upload("a.pdf", io.BytesIO(b"x"))


def test_mathpix_reported_failure():
    def handler(request):
        if request.method == "POST":
            return httpx.Response(200, json={"pdf_id": "p1"})
        return httpx.Response(200, json={"status": "error"})

    with pytest.raises(ConversionError):
        mathpix_stage(handler).process(make_document("a"), io.BytesIO(b"x"))


def test_mathpix_polling_is_bounded():
    def handler(request):
        if request.method == "POST":
            return httpx.Response(200, json={"pdf_id": "p1"})
        return httpx.Response(200, json={"status": "split"})

    stage = mathpix_stage(handler, timeout=0.1, poll_interval=0.02)

    with pytest.raises(ConversionTimeoutError) as excinfo:
        stage.process(make_document("a"), io.BytesIO(b"x"))

    assert excinfo.value.pdf_id == "p1"


def test_mathpix_http_failure():
    stage = mathpix_stage(lambda request: httpx.Response(503))

    with pytest.raises(ConversionError):
        stage.upload("a.pdf", io.BytesIO(b"x"))


def test_mathpix_requires_credentials():
    with pytest.raises(ConfigurationError):
        MathpixStage(app_id="id", app_key=None).initialize(CancelScope())


# ChatGPT --------------------------------------------------------------------------


def chatgpt_stage(handler):
    stage = ChatGPTStage(
        api_key="sk-test",
        client=httpx.Client(transport=httpx.MockTransport(handler)),
        api_url="https://openai.test/v1/chat/completions",
    )
    stage.initialize(CancelScope())
    return stage


def test_chatgpt_cleans_and_strips_fence():
    def handler(request):
        assert request.headers["Authorization"] == "Bearer sk-test"
        payload = json.loads(request.content)
        assert payload["model"] == "gpt-4o"
        assert payload["temperature"] == 0.2
        assert "# teh title" in payload["messages"][1]["content"]
        reply = "```markdown\n# The title\n```"
        return httpx.Response(200, json={"choices": [{"message": {"content": reply}}]})

    output = chatgpt_stage(handler).process(make_document("a"), io.BytesIO(b"# teh title"))

    assert output.read() == b"# The title"


def test_chatgpt_error_response():
    with pytest.raises(CleanupError):
        chatgpt_stage(lambda request: httpx.Response(429)).clean_up("text")


def test_chatgpt_response_without_choices():
    with pytest.raises(CleanupError):
        chatgpt_stage(lambda request: httpx.Response(200, json={"choices": []})).clean_up("text")


# Obsidian ---------------------------------------------------------------------------


def test_format_note_links_attachment():
    assert format_note("# Note\n\n", "scan.pdf") == "# Note\n\n![[scan.pdf]]\n"


def test_obsidian_stage():
    output = ObsidianStage().process(make_document("a", name="scan.pdf"), io.BytesIO(b"# Note"))
    assert output.read().decode() == "# Note\n\n![[scan.pdf]]\n"


# Temp storage and bundle ------------------------------------------------------------


@pytest.fixture
def bundle(tmp_path) -> StorageBundle:
    return StorageBundle(
        source_folder="inbox",
        archive_folder=str(tmp_path / "archive"),
        dest_attachments_folder=str(tmp_path / "vault" / "attachments"),
        dest_notes_folder=str(tmp_path / "vault" / "notes"),
    )


def test_temp_storage_stages_the_original(tmp_path):
    stage = TempStorageStage(tmp_path / "staging")
    stage.initialize(CancelScope())
    document = make_document("a", name="scan.pdf")

    output = stage.process(document, io.BytesIO(b"%PDF"))
    try:
        assert output.read() == b"%PDF"
    finally:
        output.close()
    assert staged_path(tmp_path / "staging", document).read_bytes() == b"%PDF"


def test_same_named_documents_are_staged_apart(tmp_path, bundle):
    staging = tmp_path / "staging"
    stage = TempStorageStage(staging)
    stage.initialize(CancelScope())
    first = make_document("/scans/inbox/Scan.pdf", name="Scan.pdf")
    second = make_document("/scans/other/Scan.pdf", name="Scan.pdf")

    for document, content in ((first, b"%PDF first"), (second, b"%PDF second")):
        stage.process(document, io.BytesIO(content)).close()

    assert staged_path(staging, first) != staged_path(staging, second)
    assert staged_path(staging, first).read_bytes() == b"%PDF first"
    assert staged_path(staging, second).read_bytes() == b"%PDF second"
    assert staged_path(staging, first).name.endswith("-Scan.pdf")

    bundler = BundleStage([bundle], staging, LocalDestination())
    bundler.process(first, io.BytesIO(b"# First")).close()
    assert (Path(bundle.dest_attachments_folder) / "Scan.pdf").read_bytes() == b"%PDF first"
    assert staged_path(staging, second).read_bytes() == b"%PDF second"


def test_unusable_temp_folder_is_a_configuration_error(tmp_path):
    blocker = tmp_path / "not-a-folder"
    blocker.write_text("file")
    stage = TempStorageStage(blocker / "staging")

    with pytest.raises(ConfigurationError, match="temp storage folder"):
        stage.initialize(CancelScope())


def test_bundle_writes_note_and_attachment(tmp_path, bundle):
    staging = tmp_path / "staging"
    staging.mkdir()
    document = make_document("a", name="scan.pdf")
    staged = staged_path(staging, document)
    staged.write_bytes(b"%PDF")
    stage = BundleStage([bundle], staging, LocalDestination())

    output = stage.process(document, io.BytesIO(b"# Note"))
    try:
        assert output.read() == b"# Note"
    finally:
        output.close()

    assert (Path(bundle.dest_notes_folder) / "scan.md").read_bytes() == b"# Note"
    assert (Path(bundle.dest_attachments_folder) / "scan.pdf").read_bytes() == b"%PDF"
    assert not staged.exists()


def test_bundle_requires_a_matching_bundle(tmp_path, bundle):
    stage = BundleStage([bundle], tmp_path, LocalDestination())

    with pytest.raises(BundleNotFoundError) as excinfo:
        stage.process(make_document("a", folder_id="elsewhere"), io.BytesIO(b"# Note"))

    assert excinfo.value.folder_id == "elsewhere"


def test_unknown_destination():
    with pytest.raises(ConfigurationError):
        build_destination("Dropbox")


# Registry -------------------------------------------------------------------------


def test_build_stages_in_configured_order(tmp_path, bundle):
    config = PipelineConfig(
        source_store="Local",
        temp_storage_folder=str(tmp_path / "staging"),
        bundles=[bundle],
    )
    settings = Settings(_env_file=None, mathpix_app_id="id", mathpix_app_key="key", chatgpt_api_key="sk")

    stages = build_stages(config, settings)

    assert [stage.name for stage in stages] == [
        "Temp Storage",
        "Mathpix OCR",
        "ChatGPT Cleanup",
        "Obsidian Note",
        "Bundle",
    ]
    assert set(config.stages) == set(STAGE_TYPES)


def test_unknown_stage_type(tmp_path):
    config = PipelineConfig(source_store="Local", temp_storage_folder=str(tmp_path))

    with pytest.raises(ConfigurationError, match="Unknown stage type"):
        create_stage("translate", config, Settings(_env_file=None))
