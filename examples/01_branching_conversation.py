"""
Example 01: Branching Conversation
=================================

Demonstrates the generation pipeline of a ConversationSession:
- Saving user and assistant messages that form a tree
- Building a budgeted context for the next request
- Persisting token counts and a summary of the messages that fell out
- Grouping a multi-model answer for display

Run without an API key:
    THREADLINE_MOCK_LLM=1 uv run python examples/01_branching_conversation.py
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path when running directly
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


async def main() -> None:
    from threadline import (
        ContextConfig,
        ConversationSession,
        Instructions,
        Message,
        ResponseVariant,
        ThreadlineConfig,
    )

    print("=== Threadline Branching Conversation Example ===\n")

    config = ThreadlineConfig(
        context=ContextConfig(max_context_tokens=120, summarize=True),
    )

    async with ConversationSession.open(
        model="openai/gpt-4o-mini",
        user="demo",
        config=config,
        db_path="/tmp/threadline_example_01.db",
    ) as session:
        print(f"Conversation: {session.conversation_id}\n")

        questions = [
            "What is Python's GIL?",
            "How does asyncio work at a high level?",
            "What's the difference between async/await and threading?",
            "When should I use asyncio vs multiprocessing?",
        ]
        parent = "root"
        for i, question in enumerate(questions):
            user_msg = await session.save_message(
                Message(
                    id=f"u{i}",
                    conversation_id=session.conversation_id,
                    parent_id=parent,
                    is_user_authored=True,
                    text=question,
                )
            )
            result = await session.build_context(
                user_msg.id, instructions=Instructions(content="Be concise.")
            )
            await session.apply_token_count_map(session.history, result.token_count_map)
            print(
                f"Turn {i + 1}: {len(result.payload)} messages, "
                f"{result.prompt_tokens} prompt tokens, summarized={result.summarized}"
            )

            answer = await session.save_message(
                Message(
                    id=f"a{i}",
                    conversation_id=session.conversation_id,
                    parent_id=user_msg.id,
                    text=f"(answer {i + 1}) " + "details " * 20,
                    model="openai/gpt-4o-mini",
                )
            )
            parent = answer.id

        # A turn answered by two models at once.
        await session.save_message(
            Message(
                id="u_cmp",
                conversation_id=session.conversation_id,
                parent_id=parent,
                is_user_authored=True,
                text="Compare two answers please.",
            )
        )
        await session.save_message(
            Message(
                id="a_cmp",
                conversation_id=session.conversation_id,
                parent_id="u_cmp",
                responses=[
                    ResponseVariant(text="Answer from model one.", model="openai/gpt-4o"),
                    ResponseVariant(text="Answer from model two.", model="anthropic/claude-3-5-sonnet"),
                ],
            )
        )

        print("\nDisplay:")
        for message in await session.display_messages():
            siblings = f" (+{len(message.siblings)} siblings)" if message.siblings else ""
            print(f"  [{message.kind}] {message.id}: {message.text[:40]}{siblings}")

        print("\nTurns ending at a_cmp:")
        for turn in await session.display_turns("a_cmp"):
            print(f"  {type(turn).__name__}: {turn.message_ids}")


if __name__ == "__main__":
    asyncio.run(main())
