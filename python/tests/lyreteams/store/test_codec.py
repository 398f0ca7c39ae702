import os, json, tempfile, logging
import unittest as test
from unittest.mock import Mock

from lyreteams.store import codec
from lyreteams.store.records import CatalogEntry, Account
from lyreteams.store.exceptions import RemoteCommError
from lyreteams.store.sim import FaultyGateway

tmpdir = tempfile.TemporaryDirectory(prefix="_test_codec.")

def tearDownModule():
    tmpdir.cleanup()

class TestHelpers(test.TestCase):

    def test_content_type_for(self):
        self.assertEqual(codec.content_type_for("a.JPG"), "image/jpeg")
        self.assertEqual(codec.content_type_for("a.pdf"), "application/pdf")
        self.assertEqual(codec.content_type_for("a.docx"),
              "application/vnd.openxmlformats-officedocument.wordprocessingml.document")
        self.assertEqual(codec.content_type_for("a.rar"), "application/x-rar-compressed")
        self.assertEqual(codec.content_type_for("a.xyz"), "application/octet-stream")
        self.assertEqual(codec.content_type_for("README"), "application/octet-stream")

    def test_human_size(self):
        self.assertEqual(codec.human_size(12), "12 B")
        self.assertEqual(codec.human_size(1536), "1.5 KB")
        self.assertEqual(codec.human_size(3 * 1024 * 1024), "3.0 MB")
        self.assertEqual(codec.human_size(None), "0 B")

    def test_format_upload_date(self):
        self.assertEqual(codec.format_upload_date("2024-03-01T12:30:00.000+00:00"),
                         "2024-03-01 12:30:00")
        self.assertEqual(codec.format_upload_date(None), "")

    def test_loads(self):
        self.assertEqual(codec.loads(b'{"a": 1}', "x"), {"a": 1})
        self.assertEqual(codec.loads(b'  ', "x", default=[]), [])
        log = Mock()
        self.assertIsNone(codec.loads(b'{"a": ', "x", log))
        self.assertTrue(log.warning.called)

    def test_dumps(self):
        self.assertEqual(json.loads(codec.dumps({"a": [1, 2]}).decode('utf-8')), {"a": [1, 2]})


class TestStoreLayout(test.TestCase):

    def test_paths(self):
        layout = codec.StoreLayout("/LyreTeams/")
        self.assertEqual(layout.files_folder, "LyreTeams/cdns")
        self.assertEqual(layout.metadata_folder, "LyreTeams/metadata")
        self.assertEqual(layout.logs_folder, "LyreTeams/logs")
        self.assertEqual(layout.catalog_path, "LyreTeams/catalog.json")
        self.assertEqual(layout.accounts_path, "LyreTeams/accounts.json")
        self.assertEqual(layout.audit_path, "LyreTeams/logs/logs.json")
        self.assertEqual(layout.file_path("a.txt"), "LyreTeams/cdns/a.txt")
        self.assertEqual(layout.sidecar_path("a.txt"), "LyreTeams/metadata/a.txt.json")
        self.assertEqual(layout.folders, ["LyreTeams", "LyreTeams/cdns", "LyreTeams/metadata",
                                          "LyreTeams/logs"])
        self.assertIn("catalog.json", layout.reserved_names)


class TestDocuments(test.TestCase):

    def setUp(self):
        self.entries = [
            CatalogEntry({'id': 1, 'filename': "a.txt", 'originalFilename': "a.txt", 'size': 1536,
                          'mimeType': "text/plain", 'uploadedAt': "2024-03-01T12:30:00.000+00:00",
                          'uploadedBy': "ava"}),
            CatalogEntry({'id': 2, 'filename': "b.pdf", 'originalFilename': "B file.pdf",
                          'uploadedBy': "bob"}).soft_deleted()
        ]

    def test_catalog(self):
        doc = codec.encode_catalog(self.entries)
        self.assertEqual(list(doc.keys()), ["a.txt"])
        self.assertEqual(doc['a.txt'], {"originalFilename": "a.txt", "uploadedBy": "ava",
                                        "uploadedAt": "2024-03-01T12:30:00.000+00:00"})

        cached = codec.decode_catalog(doc)
        self.assertEqual(cached['a.txt']['uploadedBy'], "ava")

    def test_decode_bad_catalog(self):
        log = Mock()
        self.assertEqual(codec.decode_catalog(None), {})
        self.assertEqual(codec.decode_catalog(["a.txt"], log), {})
        self.assertTrue(log.warning.called)

        cached = codec.decode_catalog({"a.txt": "goob", "b.txt": {"uploadedAt": "never",
                                                                  "uploadedBy": "ava"}})
        self.assertNotIn("a.txt", cached)
        self.assertEqual(cached['b.txt'], {"uploadedBy": "ava"})

    def test_sidecar(self):
        doc = codec.encode_sidecar(self.entries[0])
        self.assertEqual(doc, {"filename": "a.txt", "size": "1.5 KB",
                               "uploaded_on": "2024-03-01 12:30:00", "uploaded_by": "ava",
                               "mime_type": "text/plain", "system_filename": "a.txt",
                               "file_id": 1})

        meta = codec.decode_sidecar(doc)
        self.assertEqual(meta, {"originalFilename": "a.txt", "uploadedBy": "ava",
                                "uploadedAt": "2024-03-01T12:30:00.000+00:00"})
        self.assertEqual(codec.decode_sidecar("goob"), {})

    def test_merge_cached(self):
        bulk = {"a.txt": {"originalFilename": "bulk name", "uploadedBy": "ava"},
                "b.txt": {"uploadedBy": "bob"}}
        sidecars = {"a.txt": {"originalFilename": "sidecar name"},
                    "c.txt": {"uploadedBy": "cat"}}
        merged = codec.merge_cached(bulk, sidecars)
        self.assertEqual(merged['a.txt'], {"originalFilename": "sidecar name", "uploadedBy": "ava"})
        self.assertEqual(merged['b.txt'], {"uploadedBy": "bob"})
        self.assertEqual(merged['c.txt'], {"uploadedBy": "cat"})
        self.assertEqual(bulk['a.txt']['originalFilename'], "bulk name")

    def test_accounts(self):
        accts = [Account({'id': 1, 'username': "ava", 'password': "h", 'status': "approved"})]
        doc = codec.encode_accounts(accts)
        self.assertEqual(doc, [{'id': 1, 'username': "ava", 'password': "h", 'role': "user",
                                'status': "approved", 'isApproved': True}])
        self.assertEqual(codec.decode_accounts(doc), doc)
        self.assertEqual(codec.decode_accounts(None), [])
        self.assertEqual(codec.decode_accounts({"ava": 1}), [])
        self.assertEqual(codec.decode_accounts([doc[0], "goob", 3]), doc)


class TestMetadataCodec(test.TestCase):

    def setUp(self):
        self.rootdir = tempfile.mkdtemp(dir=tmpdir.name)
        self.gw = FaultyGateway(self.rootdir)
        self.layout = codec.StoreLayout("LyreTeams")
        for folder in self.layout.folders:
            self.gw.ensure_directory(folder)
        self.codec = codec.MetadataCodec(self.gw, self.layout)

    def put(self, path, content):
        if not isinstance(content, bytes):
            content = codec.dumps(content)
        self.gw.write(path, content)

    def test_read_document(self):
        self.assertEqual(self.codec.read_document("LyreTeams/goob.json", {}), {})
        self.put("LyreTeams/goob.json", {"a": 1})
        self.assertEqual(self.codec.read_document("LyreTeams/goob.json"), {"a": 1})
        self.put("LyreTeams/goob.json", b"{{{")
        self.assertEqual(self.codec.read_document("LyreTeams/goob.json", "dflt"), "dflt")

        self.gw.fail("read")
        with self.assertRaises(RemoteCommError):
            self.codec.read_document("LyreTeams/goob.json")

    def test_load_cached_metadata(self):
        self.assertEqual(self.codec.load_cached_metadata(), {})

        self.put(self.layout.catalog_path, {"a.txt": {"originalFilename": "A.txt",
                                                      "uploadedBy": "ava"},
                                            "b.txt": {"originalFilename": "B.txt"}})
        self.put(self.layout.sidecar_path("a.txt"), {"filename": "Ayy.txt", "uploaded_by": "ava",
                                                     "uploaded_on": "2024-03-01 12:30:00"})
        self.put(self.layout.sidecar_path("c.txt"), b"not json")
        self.gw.ensure_directory(self.layout.metadata_folder + "/subdir")

        cached = self.codec.load_cached_metadata()
        self.assertEqual(cached['a.txt'], {"originalFilename": "Ayy.txt", "uploadedBy": "ava",
                                           "uploadedAt": "2024-03-01T12:30:00.000+00:00"})
        self.assertEqual(cached['b.txt'], {"originalFilename": "B.txt"})
        self.assertNotIn("c.txt", cached)

    def test_load_cached_metadata_tolerates_failures(self):
        self.put(self.layout.catalog_path, {"b.txt": {"originalFilename": "B.txt"}})
        self.put(self.layout.sidecar_path("a.txt"), {"filename": "Ayy.txt"})

        self.gw.fail("list")
        cached = self.codec.load_cached_metadata()
        self.assertEqual(list(cached.keys()), ["b.txt"])

        self.gw.heal()
        self.gw.fail("read", match="catalog.json")
        cached = self.codec.load_cached_metadata()
        self.assertEqual(list(cached.keys()), ["a.txt"])

    def test_load_accounts(self):
        self.assertEqual(self.codec.load_accounts(), [])
        self.put(self.layout.accounts_path, [{"id": 1, "username": "ava"}])
        self.assertEqual(self.codec.load_accounts(), [{"id": 1, "username": "ava"}])

        self.gw.fail("read")
        with self.assertRaises(RemoteCommError):
            self.codec.load_accounts()


if __name__ == '__main__':
    test.main()
