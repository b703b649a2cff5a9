"""
Vector store module using FAISS.
Creates, manages, and searches the FAISS index holding experience embeddings.
"""

# Import NumPy for typed arrays passed to FAISS
import numpy as np  # numeric arrays
# Import FAISS for fast nearest-neighbor search
import faiss  # vector index
from pathlib import Path  # filesystem paths
from typing import List, Tuple, Optional  # type hints
import pickle  # persist row -> id mapping

from .models import Experience  # record data class

from loguru import logger  # console logger


class VectorStore:
	"""
	Manages the FAISS inner-product index for experience embeddings.
	Rows are L2-normalized so inner product equals cosine similarity.
	"""

	def __init__(self, embedding_dimension: int):
		self.embedding_dimension = embedding_dimension  # vector length
		self.index = faiss.IndexFlatIP(embedding_dimension)  # exact cosine search
		self.experience_ids: List[str] = []  # index row -> experience id
		self._rows = {}  # experience id -> index row
		logger.info(f"[VectorStore] Initialized FAISS index | dim={embedding_dimension} | metric=cosine")

	def add_experiences(self, experiences: List[Experience], embeddings: np.ndarray):
		"""
		Add experiences and their embeddings to the store.
		- embeddings: array of shape (num_experiences, embedding_dimension)
		"""
		if len(experiences) != embeddings.shape[0]:
			raise ValueError(
				f"Number of experiences ({len(experiences)}) doesn't match number of embeddings ({embeddings.shape[0]})"
			)
		if embeddings.shape[1] != self.embedding_dimension:
			raise ValueError(
				f"Embedding dimension ({embeddings.shape[1]}) doesn't match expected ({self.embedding_dimension})"
			)

		embeddings = np.ascontiguousarray(embeddings, dtype='float32')  # FAISS wants float32
		faiss.normalize_L2(embeddings)
		self.index.add(embeddings)

		for experience in experiences:
			self._rows[experience.id] = len(self.experience_ids)
			self.experience_ids.append(experience.id)

		logger.info(f"[VectorStore] Added {len(experiences)} experiences | total in index: {self.index.ntotal}")

	def search(self, query_embedding, top_k: int = 10) -> List[Tuple[str, float]]:
		"""
		Search for the top-k nearest experiences to the query embedding.
		Returns (experience_id, similarity) pairs, best first.
		"""
		if self.index.ntotal == 0:
			return []

		query = np.asarray(query_embedding, dtype='float32')
		if query.ndim == 1:
			query = query.reshape(1, -1)
		if query.shape[1] != self.embedding_dimension:
			raise ValueError(
				f"Query embedding dimension ({query.shape[1]}) doesn't match expected ({self.embedding_dimension})"
			)
		query = np.ascontiguousarray(query)
		faiss.normalize_L2(query)

		distances, indices = self.index.search(query, min(top_k, self.index.ntotal))

		results = []
		for distance, idx in zip(distances[0], indices[0]):
			if idx < 0:  # -1 marks an empty slot
				continue
			results.append((self.experience_ids[idx], float(distance)))
		return results

	def get_embedding(self, experience_id: str) -> Optional[np.ndarray]:
		"""Return the stored (normalized) vector for one experience, or None if unknown."""
		row = self._rows.get(experience_id)
		if row is None:
			return None
		return self.index.reconstruct(row)

	def size(self) -> int:
		"""Return the number of vectors currently stored in the index."""
		return self.index.ntotal

	def save_index(self, filepath: str):
		"""
		Persist the FAISS index and the id mapping next to it.
		- filepath: base path without extension; we write .index and .pkl files
		"""
		filepath = Path(filepath)
		filepath.parent.mkdir(parents=True, exist_ok=True)
		index_path = filepath.with_suffix('.index')
		faiss.write_index(self.index, str(index_path))
		metadata_path = filepath.with_suffix('.pkl')
		metadata = {
			'experience_ids': self.experience_ids,
			'embedding_dimension': self.embedding_dimension,
		}
		with open(metadata_path, 'wb') as f:
			pickle.dump(metadata, f)
		logger.info(f"[VectorStore] Saved index to {index_path} and metadata to {metadata_path}")

	@classmethod
	def load_index(cls, filepath: str) -> 'VectorStore':
		"""Load a previously saved FAISS index and its id mapping."""
		filepath = Path(filepath)
		index_path = filepath.with_suffix('.index')
		metadata_path = filepath.with_suffix('.pkl')

		if not index_path.exists():
			raise FileNotFoundError(f"Index file not found: {index_path}")
		if not metadata_path.exists():
			raise FileNotFoundError(f"Metadata file not found: {metadata_path}")

		index = faiss.read_index(str(index_path))
		with open(metadata_path, 'rb') as f:
			metadata = pickle.load(f)

		store = cls(embedding_dimension=metadata['embedding_dimension'])
		store.index = index
		store.experience_ids = metadata['experience_ids']
		store._rows = {eid: row for row, eid in enumerate(store.experience_ids)}

		logger.info(f"[VectorStore] Loaded index from {index_path} | total={store.index.ntotal}")
		return store

	@staticmethod
	def index_files_exist(base_path: str) -> bool:
		"""Check if both FAISS index and metadata files exist for a given base path."""
		base = Path(base_path)
		return base.with_suffix('.index').exists() and base.with_suffix('.pkl').exists()
