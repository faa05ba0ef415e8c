from __future__ import annotations

from linkreader.classification import ContentCategory

DOCUMENT_SYSTEM_PROMPT = (
    "You are a precise document analyst.\n"
    "1) Summarize the document objectively and in a structured way.\n"
    "2) Extract key facts, figures, names and dates.\n"
    "3) Separate observation from interpretation.\n"
    "4) Use short sentences and clear bullet points.\n"
)

IMAGE_SYSTEM_PROMPT = (
    "You are a precise image analyst.\n"
    "1) Describe the image objectively.\n"
    "2) Transcribe any visible text verbatim.\n"
    "3) Mark speculation explicitly as SPECULATION.\n"
)

SPREADSHEET_SYSTEM_PROMPT = (
    "You are a data analyst. Explain what the table contains, its columns, "
    "notable values, totals and trends. Say when only part of the rows was shown.\n"
)

VIDEO_SYSTEM_PROMPT = (
    "You are a media assistant. Explain what can be said about a video from the "
    "metadata provided, and what the user could supply for a deeper analysis.\n"
)

DEFAULT_INSTRUCTIONS = {
    ContentCategory.WEBPAGE: "Summarize the main content of this webpage.",
    ContentCategory.IMAGE: "Describe and analyze this image. Include any text it contains.",
    ContentCategory.PDF: "Analyze this PDF document: give a compact summary, then the key points.",
    ContentCategory.WORD: "Analyze this Word document: give a compact summary, then the key points.",
    ContentCategory.SPREADSHEET: "Analyze this spreadsheet: structure, key figures and notable patterns.",
    ContentCategory.VIDEO: "Describe what is known about this video file.",
    ContentCategory.SHORT_VIDEO_LINK: (
        "Analyze this short-video page: topic, likely content and audience, based on the page information."
    ),
}

SYSTEM_PROMPTS = {
    ContentCategory.IMAGE: IMAGE_SYSTEM_PROMPT,
    ContentCategory.SPREADSHEET: SPREADSHEET_SYSTEM_PROMPT,
    ContentCategory.VIDEO: VIDEO_SYSTEM_PROMPT,
    ContentCategory.SHORT_VIDEO_LINK: VIDEO_SYSTEM_PROMPT,
}


def system_prompt_for(category: ContentCategory) -> str:
    return SYSTEM_PROMPTS.get(category, DOCUMENT_SYSTEM_PROMPT)


def instructions_for(category: ContentCategory, user_prompt: str | None = None) -> str:
    if user_prompt and user_prompt.strip():
        return user_prompt.strip()
    return DEFAULT_INSTRUCTIONS.get(category, "Describe this content.")
