"""DeepSearch Chat - terminal client

Runs one chat turn against the configured model and prints the stream.
"""

import argparse
import asyncio
import uuid

from app.agents.chat_agent import ChatAgent
from app.llm_client import chat_model
from app.models.messages import Message, Role
from app.services.chat_stream import ChatStreamSession
from app.services.memory_store import InMemoryChatStore


async def run_chat(question: str, model: str | None = None, max_steps: int | None = None):
    """Ask one question and render text deltas and tool activity."""
    print(f"Question: {question}")
    print("-" * 50)

    session = ChatStreamSession(
        agent=ChatAgent(model=chat_model(model), max_steps=max_steps),
        store=InMemoryChatStore(),
        user_id="cli",
        chat_id=str(uuid.uuid4()),
        messages=[Message(role=Role.USER, content=question)],
        is_new_chat=True,
    )

    async for event in session.events():
        event_type = event.event.value
        data = event.data

        if event_type == "data":
            print(f"[*] Chat id: {data.get('chatId')}")

        elif event_type == "text_delta":
            print(data.get("text", ""), end="", flush=True)

        elif event_type == "tool_invocation":
            state = data.get("state")
            name = data.get("toolName")
            if state == "called":
                print(f"\n[~] {name} {data.get('args', {})}")
            elif state == "result":
                result = data.get("result")
                if isinstance(result, dict) and "error" in result and "kind" in result:
                    print(f"  [!] {name} failed: {result['error']}")
                else:
                    print(f"  [+] {name} done")

        elif event_type == "finish":
            print(f"\n\n[*] Done in {data.get('steps')} step(s) ({data.get('finish_reason')})")

        elif event_type == "error":
            print(f"\n[!] Error: {data.get('message', 'Unknown error')}")


def main():
    parser = argparse.ArgumentParser(description="DeepSearch Chat")
    parser.add_argument("question", help="Question to ask")
    parser.add_argument("--model", "-m", help="Model to use (default: from config)")
    parser.add_argument("--max-steps", type=int, help="Reasoning step ceiling (default: from config)")

    args = parser.parse_args()

    asyncio.run(run_chat(args.question, args.model, args.max_steps))


if __name__ == "__main__":
    main()
