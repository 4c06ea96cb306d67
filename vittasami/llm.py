"""
LLM (Large Language Model) initialisation.
"""

import os
import sys
from typing import Optional

from langchain_openai import ChatOpenAI

from vittasami.config import MODEL_NAME


def init_llm() -> Optional[ChatOpenAI]:
    """Return a ChatOpenAI instance, or None when OPENAI_API_KEY is not set."""
    if not os.getenv("OPENAI_API_KEY"):
        print("[WARN] OPENAI_API_KEY is not set; AI suggestions are disabled", file=sys.stderr)
        return None
    llm = ChatOpenAI(model=MODEL_NAME, temperature=0)
    print(f"[init] Using LLM model: {MODEL_NAME}")
    return llm
