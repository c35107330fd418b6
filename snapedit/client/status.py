from snapedit.client.store import EditorState, count_previews, viewed_snapshot
from snapedit.domain import PreviewStatus

GREETING = "Hi! How would you like to edit this photo?"
TIPS_FETCHING = "Finding ideas for this photo..."
AGENT_WORKING = "Thinking..."


def derive_status(state: EditorState) -> str:
    """The single status line, recomputed from state on every read.

    Precedence: agent run, tip stream of the viewed snapshot, its preview
    progress, then the greeting.
    """
    if state.agent_active:
        return state.agent_status or AGENT_WORKING

    snapshot = viewed_snapshot(state)
    if snapshot is None:
        return GREETING
    if snapshot.id in state.tips_fetching:
        return TIPS_FETCHING

    in_flight = count_previews(snapshot, PreviewStatus.PENDING, PreviewStatus.GENERATING)
    if in_flight:
        baseline = state.preview_baseline.get(snapshot.id, 0)
        rendered = max(0, count_previews(snapshot, PreviewStatus.DONE) - baseline)
        return f"{rendered} of {rendered + in_flight} previews rendered"

    return GREETING
