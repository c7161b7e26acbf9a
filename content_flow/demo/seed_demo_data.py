# content_flow/demo/seed_demo_data.py

from content_flow.config.loader import default_config
from content_flow.core.requests import NormalizedRequest
from content_flow.core.service import ContentFlow
from content_flow.storage.db import DEFAULT_DB_PATH
from content_flow.storage.documents import SqliteDocumentStore
from content_flow.storage.models import SuggestionStatus


def seed(db_path: str = DEFAULT_DB_PATH) -> dict:
    """Run a generate/accept and an improve/reject cycle against the mock provider."""
    documents = SqliteDocumentStore(db_path)
    documents.create_document("demo-post", "", title="Gardening for beginners")
    flow = ContentFlow.from_config(default_config(db_path), documents=documents)

    intro = flow.generate_or_improve(
        NormalizedRequest.generate("Write an intro about gardening", max_tokens=500),
        subject_id="demo-editor",
    )
    generated = flow.create_suggestion(intro, "demo-post", author_id="demo-editor", workflow_id="blog-intro")
    flow.accept_suggestion(generated.id, "demo-editor")

    current = documents.get_document("demo-post").content
    polished = flow.generate_or_improve(
        NormalizedRequest.improve(current, improvement_type="engagement"),
        subject_id="demo-editor",
    )
    improvement = flow.create_suggestion(
        polished, "demo-post", author_id="demo-editor", original_content=current
    )
    flow.reject_suggestion(improvement.id, "demo-reviewer")

    return {
        "history": len(flow.get_history("demo-post")),
        "pending": len(flow.list_suggestions("demo-post", SuggestionStatus.PENDING)),
    }


if __name__ == "__main__":
    summary = seed()
    print(f"Demo content inserted ({summary['history']} history entries)")
