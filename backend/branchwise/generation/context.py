"""Context window assembly for AI replies.

ContextAssembler turns a root-to-leaf path into the message list sent to
the completion provider. Within budget the whole path goes verbatim.
Over budget the most recent turns stay verbatim and everything earlier is
folded into one summary message, which itself degrades to a topic list
when it is still too large. The assembler holds no state between calls.
"""

from branchwise.generation.tokens import ApproximateTokenCounter, TokenCounter
from branchwise.models import ContextMessage, ContextWindow, Node

DEFAULT_MAX_TOKENS = 7000
DEFAULT_KEEP_RECENT_TURNS = 6
DEFAULT_SUMMARY_MAX_TOKENS = 1000

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful AI assistant in a branching conversation tree. "
    "Answer based on the provided conversation path. If information is "
    "missing, ask a precise clarifying question. Keep answers concise "
    "unless asked for depth."
)

USER_SNIPPET_CHARS = 100
ASSISTANT_SNIPPET_CHARS = 150
TOPIC_CHARS = 50

_CONVERSATIONAL_ROLES = ("user", "assistant")


class ContextAssembler:
    """Builds bounded, ordered message lists from conversation paths."""

    def __init__(
        self,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        *,
        summary_max_tokens: int = DEFAULT_SUMMARY_MAX_TOKENS,
        counter: TokenCounter | None = None,
    ) -> None:
        self._system_prompt = system_prompt
        self._summary_max_tokens = summary_max_tokens
        self._counter = counter or ApproximateTokenCounter()

    def build(
        self,
        path: list[Node],
        max_tokens: int = DEFAULT_MAX_TOKENS,
        keep_recent_turns: int = DEFAULT_KEEP_RECENT_TURNS,
    ) -> ContextWindow:
        """Assemble the context window for a root-first path.

        `keep_recent_turns` counts user/assistant pairs, so the verbatim
        tail is twice that many nodes.
        """
        messages = [ContextMessage(role="system", content=self._system_prompt)]

        path_tokens = self._counter.count(" ".join(n.text for n in path))

        if path_tokens <= max_tokens:
            recent = path
            early: list[Node] = []
            summary_mode = "none"
        else:
            split = max(0, len(path) - keep_recent_turns * 2)
            early, recent = path[:split], path[split:]
            summary_mode = "none"
            if early:
                summary, summary_mode = self.summarize(
                    early, min(max_tokens, self._summary_max_tokens)
                )
                messages.append(ContextMessage(
                    role="system", content=f"Context summary: {summary}"
                ))

        recent_ids: list[str] = []
        for node in recent:
            if node.role in _CONVERSATIONAL_ROLES:
                messages.append(ContextMessage(role=node.role, content=node.text))
                recent_ids.append(node.node_id)

        return ContextWindow(
            messages=messages,
            estimated_tokens=sum(self._counter.count(m.content) for m in messages),
            path_tokens=path_tokens,
            max_tokens=max_tokens,
            summary_mode=summary_mode,
            summarized_node_ids=[n.node_id for n in early],
            recent_node_ids=recent_ids,
        )

    def summarize(self, nodes: list[Node], max_tokens: int) -> tuple[str, str]:
        """Fold early path nodes into a summary. Returns (text, mode).

        Pairs are read at even offsets: a user node followed directly by an
        assistant node. Anything else is skipped by the pair summary but
        still contributes its topic if the summary collapses to topics.
        """
        segments: list[str] = []
        for i in range(0, len(nodes), 2):
            user = nodes[i]
            assistant = nodes[i + 1] if i + 1 < len(nodes) else None
            if user.role == "user" and assistant is not None and assistant.role == "assistant":
                segments.append(f"User: {user.text[:USER_SNIPPET_CHARS]}...")
                segments.append(
                    f"Assistant: {assistant.text[:ASSISTANT_SNIPPET_CHARS]}..."
                )

        summary = "\n".join(segments)
        if self._counter.count(summary) <= max_tokens:
            return summary, "pairs"

        # Earliest topics first; stop once the sentence would exceed the budget.
        kept: list[str] = []
        sentence = _topic_sentence(kept)
        for node in nodes:
            if node.role != "user":
                continue
            candidate = _topic_sentence([*kept, node.text[:TOPIC_CHARS]])
            if kept and self._counter.count(candidate) > max_tokens:
                break
            kept.append(node.text[:TOPIC_CHARS])
            sentence = candidate
        return sentence, "topics"


def _topic_sentence(topics: list[str]) -> str:
    return (
        f"Previous conversation covered topics: {', '.join(topics)}. The user has "
        "been exploring various aspects of the main subject through branching "
        "conversations."
    )
