"""
Build and persist the vector store index.

This script:
1) Loads experiences from the configured JSONL corpus
2) Generates embeddings (sentence-transformers)
3) Builds a FAISS index
4) Saves the index and metadata next to each other

Usage:
    python -m scripts.build_index

After running this once, the API loads the saved index for faster startup.
"""

import time  # measure step timings

from loguru import logger  # console logging

from discovery.config import get_settings
from discovery.data_loader import DataLoader  # data ingestion
from discovery.embeddings import EmbeddingGenerator  # embedding model wrapper
from discovery.logging_setup import configure_logging
from discovery.vector_store import VectorStore  # FAISS index helper


def main():
	settings = get_settings()
	configure_logging(settings.log_level)
	logger.info("=" * 60)
	logger.info("Build Experience Index")
	logger.info("=" * 60)

	logger.info(f"[1/4] Loading experiences from {settings.data_path}...")
	loader = DataLoader()
	experiences = loader.load_experiences_from_jsonl(settings.data_path)
	logger.info(f"[OK] Loaded {len(experiences)} experiences in {len(loader.get_all_categories(experiences))} categories")

	logger.info("[2/4] Generating embeddings...")
	t0 = time.time()
	emb = EmbeddingGenerator(settings.providers.embedding_model)
	embeddings = emb.generate_experience_embeddings(experiences, batch_size=32, show_progress=True)
	logger.info(f"[OK] Embeddings generated in {time.time() - t0:.2f}s; shape={embeddings.shape}")

	logger.info("[3/4] Building FAISS index...")
	store = VectorStore(emb.get_embedding_dimension())
	store.add_experiences(experiences, embeddings)
	logger.info(f"[OK] Index built with {store.size()} vectors")

	logger.info(f"[4/4] Saving index and metadata to {settings.index_path}.*")
	store.save_index(settings.index_path)

	logger.info("All done! The API will load this saved index if present.")
	logger.info("=" * 60)


if __name__ == '__main__':
	main()
