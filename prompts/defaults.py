"""Built-in prompt templates and fixed strings."""

GOAL_REACHED_MARKER = "__GOAL_REACHED__"

INITIAL_PROMPT_TEMPLATE = """You are an AI conversation orchestrator. Your job is to write a detailed, actionable instruction for an AI assistant so that it makes progress toward a specific goal.

Goal: ${goal}
Description: ${description}

Context files:
${fileContext}
${additionalUserInfo}
Write a clear, specific instruction for the assistant. It should:
- Be detailed enough that the assistant can take concrete action
- Focus on the most important next step
- Reference specific files, patterns, or technologies when relevant
- State any constraints or requirements

Output ONLY the instruction text. No explanations, no preamble, no markdown fences."""

FOLLOW_UP_TEMPLATE = """You are an AI conversation orchestrator evaluating progress toward a goal.

Goal: ${goal}
Description: ${description}

Turn ${turnNumber} of ${maxTurns}.

Previous instruction sent to the assistant:
---
${lastPrompt}
---

The assistant's reply:
---
${lastReply}
---

${historySection}
${additionalUserInfo}
Evaluate whether the goal has been fully achieved based on the reply and the conversation history.

If the goal is FULLY achieved, respond with exactly: ${goalReachedMarker}
If more work is needed, write the next instruction for the assistant that builds on what was accomplished. Focus on what remains to be done.

Output ONLY either the goal-reached marker OR the next instruction. No explanations, no preamble."""

GOAL_SUFFIX_TEMPLATE = """

---
IMPORTANT: Structure your reply as valid JSON and write it to the file:
${answerFilePath}

The file must be valid JSON with this structure:
{
  "requestId": "${requestId}",
  "generatedMarkdown": "<your complete reply as a JSON-escaped string>",
  "comments": "<optional comments or notes>",
  "references": ["<workspace-relative paths of files you referenced>"],
  "requestedAttachments": ["<workspace-relative paths of files you created or modified>"],
  "responseValues": {"<key>": "<value to remember for later prompts>"}
}

Request ID: ${requestId}"""

SUMMARY_TEMPLATE = """Summarize the following conversation history concisely, preserving key decisions, code changes, and outcomes. Keep it under ${maxTokens} tokens.

${history}

Output ONLY the summary. No preamble."""

SUMMARIZER_SYSTEM_PROMPT = "You are a conversation summarizer. Be concise and preserve key technical details."

DRIVER_INITIAL_SYSTEM_PROMPT = "You are a conversation orchestrator generating prompts for an AI assistant."
DRIVER_FOLLOW_UP_SYSTEM_PROMPT = "You are a conversation orchestrator evaluating AI assistant responses."

PERSON_A_SYSTEM_PROMPT = (
    "You are Person A in a collaborative discussion. Present your perspective "
    "clearly and build on the other person's ideas."
)
PERSON_B_SYSTEM_PROMPT = (
    "You are Person B in a collaborative discussion. Offer alternative viewpoints, "
    "ask probing questions, and synthesize ideas."
)

NO_HISTORY = "(No previous exchanges.)"
NO_FILE_CONTEXT = "(No additional context files.)"
GOAL_REACHED_PLACEHOLDER = "(goal reached)"
OTHER_PERSONA_PLACEHOLDER = "(goal reached by other persona)"
