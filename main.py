#!/usr/bin/env python3
"""
Anesthesia Case RAG - Command Line Interface

This script drives the case retrieval pipeline:
1. Loading and validating the clinical case library
2. Embedding generation and indexing
3. Retrieval of grounding cases for a clinical question
4. Plain-text case search and library statistics
"""

import argparse
import json
import logging
import time
from pathlib import Path
from typing import Optional

from anesthesia_rag import config
from anesthesia_rag.data.corpus import CaseCorpus
from anesthesia_rag.models.types import QueryResult
from anesthesia_rag.retrieval.embeddings import Embedder, create_embedder
from anesthesia_rag.retrieval.formatting import format_cases_for_prompt
from anesthesia_rag.retrieval.search import DEFAULT_TOP_K, CaseRetriever
from anesthesia_rag.retrieval.vector_store import create_vector_index


class CaseRAGSystem:
    """Wires the case library, embedder and vector index together."""

    def __init__(self, cases_path: str, index_path: str, embedder: Embedder, vector_backend: str = "memory"):
        """
        Initialize the case RAG system.

        Args:
            cases_path: JSON file with the case library
            index_path: JSON file for the persisted vector index
            embedder: Embedder for cases and queries
            vector_backend: "memory" or "faiss"
        """
        self.cases_path = Path(cases_path)
        self.index_path = Path(index_path)
        self.retriever = CaseRetriever(
            embedder=embedder,
            vector_index=create_vector_index(vector_backend),
        )

    def load_cases(self) -> CaseCorpus:
        """Load and validate the case library."""
        print(f"📚 Loading cases from {self.cases_path}...")
        corpus = CaseCorpus.from_json_file(str(self.cases_path))
        self.retriever.load_corpus(corpus)
        print(f"✅ Loaded {len(corpus)} cases")
        return corpus

    def build_index(self):
        """Embed all cases, then save the index."""
        print("🧠 Generating embeddings...")
        count = self.retriever.build_index()
        self.retriever.save_index(str(self.index_path))
        print(f"💾 Indexed {count} cases to {self.index_path}")
        print(f"📊 Vector store stats: {self.retriever.vector_index.stats()}")

    def load_index(self) -> bool:
        """Load an existing index from disk."""
        print("📂 Loading existing index...")
        loaded = self.retriever.load_index(str(self.index_path))
        if loaded:
            print(f"✅ Loaded {len(self.retriever.vector_index)} indexed cases")
        else:
            print("⚠️  No vector store found. Run the 'index' command to embed cases; using keyword search.")
        return loaded

    def search(self, query: str, k: int = DEFAULT_TOP_K) -> QueryResult:
        """
        Retrieve grounding cases for a query.

        Args:
            query: Clinical question
            k: Number of cases to return

        Returns:
            QueryResult object
        """
        start_time = time.time()
        cases = self.retriever.retrieve_relevant_cases(query, top_k=k)
        retrieval_time = time.time() - start_time

        return QueryResult(
            query=query,
            cases=cases,
            prompt_context=format_cases_for_prompt(cases),
            source=cases[0].source if cases else "none",
            retrieval_time=retrieval_time,
        )

    def interactive_search(self):
        """Interactive search loop."""
        print("\n🤖 Interactive Case Search")
        print("Type a clinical question. Type 'quit' to exit.\n")

        while True:
            try:
                query = input("❓ Your question: ").strip()
                if query.lower() in ['quit', 'exit', 'q']:
                    break

                if not query:
                    continue

                print("🔍 Searching...")
                print_result(self.search(query))
                print("\n" + "=" * 80)

            except KeyboardInterrupt:
                break
            except Exception as e:
                print(f"❌ Error: {e}")


def print_result(result: QueryResult):
    print(f"\n📊 Found {len(result.cases)} relevant cases ({result.source})")
    print(f"⏱️  Retrieval time: {result.retrieval_time:.3f}s\n")
    for i, case in enumerate(result.cases, 1):
        print(f"{i}. {case.title} - {case.patient_age} (ASA {case.asa}) "
              f"Score: {case.relevance_score * 100:.1f}%")
    if result.prompt_context:
        print(result.prompt_context)


def build_embedder(provider: str, api_key: Optional[str]) -> Embedder:
    return create_embedder(
        provider=provider,
        api_key=api_key,
        model=config.EMBEDDING_MODEL or None,
        timeout=config.EMBEDDING_TIMEOUT_SECONDS,
        dimension=config.EMBEDDING_DIMENSION,
    )


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(description="Anesthesia Case RAG")
    parser.add_argument("command", choices=["index", "search", "cases", "stats"],
                        help="Command to run")
    parser.add_argument("--cases", default=config.CASES_PATH, help="Case library JSON file")
    parser.add_argument("--index-path", default=config.VECTOR_STORE_PATH, help="Vector store JSON file")
    parser.add_argument("--provider", default=config.EMBEDDING_PROVIDER,
                        choices=["local", "mistral", "openai"], help="Embedding provider")
    parser.add_argument("--api-key", help="Embedding API key (or set MISTRAL_API_KEY / OPENAI_API_KEY)")
    parser.add_argument("--backend", default=config.VECTOR_BACKEND, choices=["memory", "faiss"],
                        help="Vector index backend")
    parser.add_argument("--query", help="Query for the search and cases commands")
    parser.add_argument("-k", type=int, default=DEFAULT_TOP_K, help="Number of cases to return")
    parser.add_argument("--details", action="store_true", help="Include full case records (cases command)")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    api_key = args.api_key or config.api_key_for(args.provider)
    rag = CaseRAGSystem(
        cases_path=args.cases,
        index_path=args.index_path,
        embedder=build_embedder(args.provider, api_key),
        vector_backend=args.backend,
    )

    try:
        corpus = rag.load_cases()

        if args.command == "index":
            rag.build_index()

        elif args.command == "search":
            rag.load_index()
            if args.query:
                print_result(rag.search(args.query, k=args.k))
            else:
                rag.interactive_search()

        elif args.command == "cases":
            if not args.query:
                print("❌ --query is required for the cases command")
                return 1
            result = rag.retriever.search_cases(args.query, limit=args.k, include_details=args.details)
            print(result.response)
            print(json.dumps(result.relevant_cases, indent=2))

        elif args.command == "stats":
            print(json.dumps(corpus.statistics(), indent=2))

    except Exception as e:
        print(f"❌ Error: {e}")
        return 1

    return 0


if __name__ == "__main__":
    exit(main())
