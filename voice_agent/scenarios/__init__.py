"""
Prompt scenarios for the voice agent.

Each scenario defines:
- name: Scenario identifier
- prompt: System prompt for the chat model
- greeting_text: Fixed opening phrase spoken right after joining the room
"""
