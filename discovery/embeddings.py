"""
Embedding generation module.
Creates vector embeddings for experiences and queries using sentence-transformers.
"""

# Import NumPy for numerical arrays that store embeddings
import numpy as np  # efficient numeric arrays
# Import typing helpers for clear API contracts
from typing import List, Protocol  # list types, provider interface
# Import the SentenceTransformer model to convert text into embeddings
from sentence_transformers import SentenceTransformer  # pre-trained embedding model

from .models import Experience  # structured record

# Import loguru for consistent console logging
from loguru import logger  # console logger


class EmbeddingProvider(Protocol):
	"""Anything that can turn one piece of text into a vector."""

	def embed(self, text: str) -> List[float]:
		...


class EmbeddingGenerator:
	"""
	Generates embeddings for experiences and queries using sentence-transformers.
	"""

	def __init__(self, model_name: str = 'all-MiniLM-L6-v2'):
		"""
		Initialize the embedding generator with a chosen sentence transformer model.
		- model_name selects which pre-trained model to load. We use a fast, accurate default.
		"""
		logger.info(f"[Embeddings] Loading embedding model: {model_name}")  # log model selection
		# Downloads on first use then caches locally
		self.model = SentenceTransformer(model_name)
		self.model_name = model_name
		# Dimensionality of produced vectors (e.g., 384)
		self.embedding_dimension = self.model.get_sentence_embedding_dimension()
		logger.info(f"[Embeddings] Model ready. Embedding dimension: {self.embedding_dimension}")

	def generate_experience_embeddings(
		self,
		experiences: List[Experience],
		batch_size: int = 32,
		show_progress: bool = True
	) -> np.ndarray:
		"""
		Generate embeddings for all experiences by feeding their 'searchable_text' into the model.
		Returns a NumPy array of shape (num_experiences, embedding_dimension).
		"""
		if not experiences:
			raise ValueError("No experiences provided for embedding generation")

		texts = []  # one string per experience, same order as input
		for experience in experiences:
			if not experience.searchable_text:
				raise ValueError(f"Experience {experience.id} missing searchable_text. Run preprocessing first.")
			texts.append(experience.searchable_text)

		logger.info(f"[Embeddings] Generating embeddings for {len(experiences)} experiences (batch {batch_size})")

		embeddings = self.model.encode(
			texts,
			batch_size=batch_size,
			show_progress_bar=show_progress,
			convert_to_numpy=True,
			normalize_embeddings=True  # L2-normalize so cosine == dot product
		)

		logger.info(f"[Embeddings] Generated matrix with shape {embeddings.shape}")
		return embeddings

	def generate_query_embedding(self, query: str) -> np.ndarray:
		"""
		Generate an embedding vector for a single query string.
		Returns a NumPy array of length 'embedding_dimension'.
		"""
		if not query or not query.strip():  # empty or whitespace only
			raise ValueError("Query cannot be empty")

		return self.model.encode(
			query.strip(),
			convert_to_numpy=True,
			normalize_embeddings=True
		)

	def embed(self, text: str) -> List[float]:
		"""Provider entry point used by the fusion stage."""
		return self.generate_query_embedding(text).astype('float32').tolist()

	def get_embedding_dimension(self) -> int:
		"""Return the dimensionality of the embedding vectors produced by the model."""
		return self.embedding_dimension
