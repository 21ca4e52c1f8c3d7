#!/usr/bin/env python3
"""
Example of a streaming tool-call loop that works the same way for every provider.

This example demonstrates:
1. How to print text and thinking chunks while the stream is live
2. How to read the assembled tool calls from the final Response
3. How to execute functions and continue the conversation from response.context

Run it with a provider-qualified model, e.g.:
    python examples/streaming_tool_calls_example.py anthropic:claude-sonnet-4-5
"""

import asyncio
import json
import sys

from llmsuite import ChunkType, Client, LLMError, Message


def get_weather(location: str, unit: str = "fahrenheit") -> str:
    """Mock weather function for demonstration."""
    weather_data = {
        "tokyo": {"temp": 10, "condition": "cloudy"},
        "san francisco": {"temp": 72, "condition": "sunny"},
        "paris": {"temp": 22, "condition": "rainy"},
    }

    data = weather_data.get(location.lower())
    if data is None:
        return json.dumps({"location": location, "temperature": "unknown", "condition": "unknown"})
    return json.dumps({
        "location": location,
        "temperature": data["temp"],
        "unit": unit,
        "condition": data["condition"],
    })


def multiply(a: float, b: float) -> str:
    """Mock calculation function for demonstration."""
    return json.dumps({"a": a, "b": b, "result": a * b})


# Available functions mapping
AVAILABLE_FUNCTIONS = {
    "get_weather": get_weather,
    "multiply": multiply,
}

# Tool definitions
TOOLS = [
    {
        "type": "function",
        "function": {
            "name": "get_weather",
            "description": "Get current weather for a location",
            "parameters": {
                "type": "object",
                "properties": {
                    "location": {"type": "string", "description": "The city name"},
                    "unit": {"type": "string", "enum": ["celsius", "fahrenheit"], "description": "Temperature unit"},
                },
                "required": ["location"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "multiply",
            "description": "Multiply two numbers",
            "parameters": {
                "type": "object",
                "properties": {
                    "a": {"type": "number"},
                    "b": {"type": "number"},
                },
                "required": ["a", "b"],
            },
        },
    },
]


async def stream_turn(client: Client, model: str, context):
    """Stream one assistant turn to stdout and return the final Response."""
    stream = await client.chat.completions.create(model=model, messages=context, tools=TOOLS)
    async with stream:
        async for chunk in stream:
            if chunk.type is ChunkType.THINKING and chunk.text:
                print(f"\033[2m{chunk.text}\033[0m", end="", flush=True)
            elif chunk.type is ChunkType.TEXT:
                print(chunk.text, end="", flush=True)
        response = await stream.response()
    print()
    return response


async def streaming_chat_with_tools(model: str):
    """Demonstrate streaming chat with tool calls."""
    client = Client()

    context = [
        Message.system("You are a helpful assistant with access to weather and calculation tools."),
        Message.user("What's the weather in Tokyo and what's 15 * 23?"),
    ]

    print("User: What's the weather in Tokyo and what's 15 * 23?")
    print("Assistant: ", end="", flush=True)
    response = await stream_turn(client, model, context)

    while response.tool_calls():
        print(f"\nExecuting {len(response.tool_calls())} tool call(s)...")
        # response.context already ends with the assistant turn that asked for the tools
        results = []
        for tool_call in response.tool_calls():
            function_name = tool_call.function.name
            function_args = tool_call.parsed_arguments()
            print(f"  Calling {function_name}({function_args})")

            function_to_call = AVAILABLE_FUNCTIONS.get(function_name)
            if function_to_call is None:
                output = json.dumps({"error": f"Unknown function: {function_name}"})
            else:
                output = function_to_call(**function_args)
            print(f"  Result: {output}")
            results.append(Message.tool_result(tool_call.id, output))

        print("\nAssistant (after tool calls): ", end="", flush=True)
        response = await stream_turn(client, model, list(response.context.messages) + results)

    print(f"\nfinish_reason={response.finish_reason.value} usage={response.usage}")


async def main():
    """Main function."""
    model = sys.argv[1] if len(sys.argv) > 1 else "deepseek:deepseek-chat"
    print(f"Streaming Tool Calls Example with {model}")
    print("=" * 50)

    try:
        await streaming_chat_with_tools(model)
    except (LLMError, ValueError) as e:
        print(f"\nError: {e}")

    print("\n" + "=" * 50)


if __name__ == "__main__":
    asyncio.run(main())
