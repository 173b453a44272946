import sys
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from VectorStore import (  # type: ignore  # noqa: E402
    DimensionMismatchError,
    DuplicateDocumentError,
    VectorDocument,
    VectorStore,
)

DIM = 128


def _doc(doc_id, value, **metadata):
    return VectorDocument(id=doc_id, embedding=[value] * DIM, metadata=metadata)


class AddTests(unittest.TestCase):
    def setUp(self):
        self.store = VectorStore(dimensions=DIM)

    def test_add_document(self):
        self.store.add(_doc("doc1", 1.0, type="code", language="typescript"))
        self.assertTrue(self.store.has("doc1"))
        self.assertEqual(self.store.stats()["totalDocuments"], 1)

    def test_duplicate_id_rejected(self):
        self.store.add(_doc("doc1", 1.0))
        with self.assertRaisesRegex(DuplicateDocumentError, "already exists"):
            self.store.add(_doc("doc1", 0.5))

    def test_wrong_dimensions_rejected(self):
        bad = VectorDocument(id="doc1", embedding=[1.0] * 64)
        with self.assertRaisesRegex(DimensionMismatchError, "don't match"):
            self.store.add(bad)
        self.assertFalse(self.store.has("doc1"))

    def test_add_many_is_all_or_nothing(self):
        self.store.add_many([_doc("doc1", 1.0), _doc("doc2", 0.5), _doc("doc3", 0.25, type="knowledge")])
        self.assertEqual(self.store.stats()["totalDocuments"], 3)

        with self.assertRaises(DimensionMismatchError):
            self.store.add_many([_doc("doc4", 1.0), VectorDocument(id="doc5", embedding=[1.0])])
        self.assertFalse(self.store.has("doc4"))

        with self.assertRaises(DuplicateDocumentError):
            self.store.add_many([_doc("doc6", 1.0), _doc("doc6", 1.0)])
        self.assertFalse(self.store.has("doc6"))

    def test_invalid_dimensions(self):
        with self.assertRaises(ValueError):
            VectorStore(dimensions=0)


class SearchTests(unittest.TestCase):
    def setUp(self):
        self.store = VectorStore(dimensions=DIM)
        self.store.add(_doc("doc1", 1.0, type="code", language="typescript"))
        half = [0.5] * (DIM // 2) + [-0.5] * (DIM // 2)
        self.store.add(VectorDocument(id="doc2", embedding=half, metadata={"type": "code"}))
        self.store.add(_doc("doc3", -0.1, type="knowledge"))

    def test_most_similar_first(self):
        results = self.store.search([1.0] * DIM, k=2)
        self.assertEqual(len(results), 2)
        self.assertEqual(results[0].doc.id, "doc1")
        self.assertAlmostEqual(results[0].similarity, 1.0, places=5)
        self.assertEqual(results[1].doc.id, "doc2")

    def test_k_limits_results(self):
        self.assertEqual(len(self.store.search([1.0] * DIM, k=1)), 1)

    def test_min_score(self):
        results = self.store.search([1.0] * DIM, k=10, min_score=0.5)
        self.assertEqual([r.doc.id for r in results], ["doc1"])

    def test_filter(self):
        results = self.store.search([1.0] * DIM, k=10, filter=lambda d: d.metadata.get("type") == "code")
        self.assertEqual({r.doc.id for r in results}, {"doc1", "doc2"})

    def test_empty_store(self):
        self.assertEqual(VectorStore(dimensions=DIM).search([1.0] * DIM), [])

    def test_wrong_query_dimensions(self):
        with self.assertRaisesRegex(DimensionMismatchError, "don't match"):
            self.store.search([1.0] * 64)

    def test_zero_query_scores_zero(self):
        results = self.store.search([0.0] * DIM, k=3)
        self.assertTrue(all(r.similarity == 0.0 for r in results))


class LifecycleTests(unittest.TestCase):
    def setUp(self):
        self.store = VectorStore(dimensions=DIM)

    def test_get_and_missing(self):
        self.store.add(_doc("doc1", 1.0, language="typescript"))
        self.assertEqual(self.store.get("doc1").metadata["language"], "typescript")
        self.assertIsNone(self.store.get("nonexistent"))

    def test_delete(self):
        self.store.add(_doc("doc1", 1.0))
        self.store.add(_doc("doc2", 0.5))
        self.assertTrue(self.store.delete("doc1"))
        self.assertFalse(self.store.has("doc1"))
        self.assertFalse(self.store.delete("doc1"))
        results = self.store.search([1.0] * DIM, k=10)
        self.assertEqual([r.doc.id for r in results], ["doc2"])

    def test_update_replaces_and_inserts(self):
        self.store.add(_doc("doc1", 1.0, language="javascript"))
        self.store.update(_doc("doc1", 0.5, language="typescript"))
        self.store.update(_doc("doc2", 0.5))
        self.assertEqual(self.store.get("doc1").metadata["language"], "typescript")
        self.assertEqual(self.store.stats()["totalDocuments"], 2)
        with self.assertRaises(DimensionMismatchError):
            self.store.update(VectorDocument(id="doc1", embedding=[1.0]))

    def test_all_and_clear(self):
        self.store.add_many([_doc("a", 1.0), _doc("b", 0.5)])
        self.assertEqual([d.id for d in self.store.all()], ["a", "b"])
        self.store.clear()
        self.assertEqual(self.store.all(), [])
        self.assertEqual(self.store.stats(), {"totalDocuments": 0, "dimensions": DIM})


if __name__ == "__main__":
    unittest.main()
