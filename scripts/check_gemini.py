import asyncio
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from app.schemas.triage import Message
from app.services.gemini import GeminiGateway

gateway = GeminiGateway(api_key=os.getenv("GOOGLE_API_KEY"))


async def main():
    print("Testing Gemini connection...\n")

    # Test 1: Greeting
    greeting = await gateway.request_greeting("English")
    print("✅ Greeting:")
    print(greeting)

    # Test 2: One triage turn
    print("\n" + "=" * 50 + "\n")
    turn = await gateway.advance_triage(
        [
            Message(role="model", text=greeting),
            Message(role="user", text="I have had a mild headache since this morning."),
        ],
        "English",
    )
    print("✅ Triage turn:")
    print(turn.model_dump_json(indent=2, by_alias=True))

    print("\n" + "=" * 50)
    print("🎯 If LANGCHAIN_API_KEY is set, check the LangSmith dashboard (project: navicare)")


asyncio.run(main())
