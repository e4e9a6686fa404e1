#!/usr/bin/env python
"""Validate setup - check dependencies, configuration and backing services."""
import sys
import asyncio
from pathlib import Path

# Color codes for terminal output
GREEN = "\033[92m"
RED = "\033[91m"
YELLOW = "\033[93m"
BLUE = "\033[94m"
RESET = "\033[0m"

def print_success(msg):
    print(f"{GREEN}✓{RESET} {msg}")

def print_error(msg):
    print(f"{RED}✗{RESET} {msg}")

def print_info(msg):
    print(f"{BLUE}ℹ{RESET} {msg}")

def print_warning(msg):
    print(f"{YELLOW}⚠{RESET} {msg}")

def print_section(title):
    print(f"\n{BLUE}{'='*60}{RESET}")
    print(f"{BLUE}{title:^60}{RESET}")
    print(f"{BLUE}{'='*60}{RESET}\n")


def model_installed(name: str, installed: set) -> bool:
    """Ollama reports 'llama3.1:latest' for a model pulled as 'llama3.1'."""
    return name in installed or f"{name}:latest" in installed


async def main():
    print_section("ragtutor - Setup Validation")

    errors = []
    warnings = []

    # 1. Python version check
    print_section("1. Python Environment")
    python_version = f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"
    print_info(f"Python version: {python_version}")
    if sys.version_info >= (3, 10):
        print_success("Python version >= 3.10")
    else:
        print_error("Python version < 3.10 (required)")
        errors.append("Python version too old")

    in_venv = hasattr(sys, 'base_prefix') and sys.base_prefix != sys.prefix
    if in_venv:
        print_success("Running in virtual environment")
    else:
        print_warning("Not running in virtual environment (recommended)")
        warnings.append("Not in venv")

    # 2. Import core dependencies
    print_section("2. Core Dependencies")

    dependencies = [
        ("httpx", "HTTP client"),
        ("structlog", "Structured logging"),
        ("pydantic", "Response validation"),
        ("yaml", "Frontmatter parsing"),
        ("pypdf", "PDF text extraction"),
    ]

    for module_name, description in dependencies:
        try:
            __import__(module_name)
            print_success(f"{description:30} ({module_name})")
        except ImportError as e:
            print_error(f"{description:30} ({module_name}) - {e}")
            errors.append(f"Missing: {module_name}")

    # 3. Configuration
    print_section("3. Configuration")

    try:
        sys.path.insert(0, str(Path(__file__).parent.parent))
        from ragtutor.config import SettingsStore
        from ragtutor.errors import InvalidConfiguration
        from ragtutor.rag.chunker import validate_window

        store = SettingsStore()
        settings = store.load()

        print_success("Settings loaded successfully")
        print_info(f"  Settings file: {store.path}")
        print_info(f"  LLM model: {settings.llm_model}")
        print_info(f"  Embedding model: {settings.embedding_model}")
        print_info(f"  Ollama URL: {settings.ollama_base_url}")
        print_info(f"  Chroma URL: {settings.chroma_base_url}")
        print_info(f"  Chunk size: {settings.chunk_size} chars (overlap {settings.chunk_overlap})")

        try:
            validate_window(settings.chunk_size, settings.chunk_overlap)
            print_success("Chunk window is valid")
        except InvalidConfiguration as e:
            print_error(str(e))
            errors.append("Invalid chunk window")

        if settings.chroma_collection_id:
            print_info(f"  Stored collection id: {settings.chroma_collection_id}")
        else:
            print_info("  No stored collection id (resolved on first run)")

    except Exception as e:
        print_error(f"Failed to load config: {e}")
        errors.append("Config loading failed")
        return errors, warnings

    # 4. Ollama service and models
    print_section("4. Ollama Service")

    from ragtutor.llm_client import OllamaClient
    from ragtutor.errors import EmbeddingError
    import httpx

    ollama = OllamaClient(base_url=settings.ollama_base_url)

    try:
        models = set(await ollama.list_models())
        print_success(f"Ollama service running at {settings.ollama_base_url}")
        print_info(f"Found {len(models)} models installed")

        for label, name in (("LLM", settings.llm_model), ("Embedding", settings.embedding_model)):
            if model_installed(name, models):
                print_success(f"{label} model available: {name}")
            else:
                print_error(f"{label} model missing: {name}")
                print_info(f"  Run: ollama pull {name}")
                errors.append(f"Missing {label.lower()} model: {name}")

    except httpx.ConnectError:
        print_error("Cannot connect to Ollama service")
        print_info("  Make sure Ollama is running: ollama serve")
        errors.append("Ollama not running")
    except httpx.HTTPError as e:
        print_error(f"Ollama check failed: {e}")
        errors.append(f"Ollama error: {e}")

    # 5. Embedding API test
    print_section("5. Embedding API Test")

    try:
        embedding = await ollama.embed("test", model=settings.embedding_model)
        print_success(f"Embedding API working (dimension: {len(embedding)})")
    except EmbeddingError as e:
        print_error(f"Embedding test failed: {e}")
        errors.append("Embedding API issue")

    # 6. Chroma service
    print_section("6. Chroma Service")

    from ragtutor.rag.chroma import ChromaAdmin, ChromaClient

    admin = ChromaAdmin(ChromaClient(base_url=settings.chroma_base_url))
    if await admin.heartbeat():
        print_success(f"Chroma reachable at {settings.chroma_base_url}")
    else:
        print_error(f"Chroma not reachable at {settings.chroma_base_url}")
        errors.append("Chroma not reachable")

    # 7. Summary
    print_section("Summary")

    if not errors:
        print_success("All checks passed! ✨")
        print_info("\n  Next step: python scripts/generate_exam.py <notes-folder>")
    else:
        print_error(f"Found {len(errors)} error(s):")
        for i, error in enumerate(errors, 1):
            print(f"  {i}. {error}")

    if warnings:
        print_warning(f"\nFound {len(warnings)} warning(s):")
        for i, warning in enumerate(warnings, 1):
            print(f"  {i}. {warning}")

    print()
    return errors, warnings

if __name__ == "__main__":
    errors, warnings = asyncio.run(main())
    sys.exit(1 if errors else 0)
