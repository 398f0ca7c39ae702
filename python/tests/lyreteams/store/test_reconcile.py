import os, tempfile, threading, itertools
import unittest as test
from collections import OrderedDict

from lyreteams.store import reconcile as rec
from lyreteams.store.codec import StoreLayout, dumps
from lyreteams.store.records import CatalogEntry, DELETED_BY_REQUEST, DELETED_BY_SCAN
from lyreteams.store.exceptions import RemoteUnavailable, RemoteCommError
from lyreteams.store.sim import FaultyGateway

tmpdir = tempfile.TemporaryDirectory(prefix="_test_reconcile.")

def tearDownModule():
    tmpdir.cleanup()

def item(name, size=10, modified="2024-03-01T12:00:00.000+00:00", kind="file"):
    return {'name': name, 'size': size, 'modified': modified, 'kind': kind}

def entry(ident, key, **kw):
    data = {'id': ident, 'filename': key, 'originalFilename': key, 'size': 10,
            'path': "LyreTeams/cdns/"+key, 'uploadedAt': "2024-01-01T00:00:00.000+00:00",
            'uploadedBy': "ava"}
    data.update(kw)
    return CatalogEntry(data)

class TestReconciler(test.TestCase):

    def setUp(self):
        self.rootdir = tempfile.mkdtemp(dir=tmpdir.name)
        self.gw = FaultyGateway(self.rootdir)
        self.layout = StoreLayout("LyreTeams")
        for folder in self.layout.folders:
            self.gw.ensure_directory(folder)
        self.rec = rec.Reconciler(self.gw, self.layout)
        self.ids = itertools.count(100)
        self.alloc = lambda: next(self.ids)

    def test_is_user_file(self):
        self.assertTrue(self.rec.is_user_file(item("a.txt")))
        self.assertFalse(self.rec.is_user_file(item("sub", kind="folder")))
        self.assertFalse(self.rec.is_user_file(item(".hidden")))
        self.assertFalse(self.rec.is_user_file(item("#TRASH")))
        self.assertFalse(self.rec.is_user_file(item("catalog.json")))
        self.assertFalse(self.rec.is_user_file(item("accounts.backup.json")))
        self.assertFalse(self.rec.is_user_file(item("x.backup.json")))
        self.assertTrue(self.rec.is_user_file(item("notes.json")))

    def test_scan(self):
        self.gw.write("LyreTeams/cdns/a.txt", b"hello")
        self.gw.write("LyreTeams/cdns/.DS_Store", b"")
        self.gw.ensure_directory("LyreTeams/cdns/sub")
        self.gw.write(self.layout.sidecar_path("a.txt"), dumps({"filename": "A.txt"}))

        files, cached = self.rec.scan()
        self.assertEqual([f['name'] for f in files], ["a.txt"])
        self.assertEqual(files[0]['size'], 5)
        self.assertEqual(cached, {"a.txt": {"originalFilename": "A.txt"}})

    def test_scan_fails(self):
        self.gw.fail("list", match="cdns")
        with self.assertRaises(RemoteUnavailable) as cm:
            self.rec.scan()
        self.assertTrue(isinstance(cm.exception.cause, RemoteCommError))

    def test_merge_discovers(self):
        cached = {"a.txt": {"originalFilename": "A file.txt", "uploadedBy": "bob",
                            "uploadedAt": "2024-02-01T00:00:00.000+00:00"}}
        files, report = self.rec.merge({}, [item("a.txt", 5), item("b.pdf")], cached, self.alloc)

        self.assertEqual(list(files.keys()), [100, 101])
        a = files[100]
        self.assertEqual(a.storage_key, "a.txt")
        self.assertEqual(a.display_name, "A file.txt")
        self.assertEqual(a.uploaded_by, "bob")
        self.assertEqual(a.uploaded_at, "2024-02-01T00:00:00.000+00:00")
        self.assertEqual(a.size, 5)
        self.assertEqual(a.content_type, "text/plain")
        self.assertEqual(a.remote_path, "LyreTeams/cdns/a.txt")

        b = files[101]
        self.assertEqual(b.display_name, "b.pdf")
        self.assertEqual(b.uploaded_by, "unknown")
        self.assertEqual(b.uploaded_at, "2024-03-01T12:00:00.000+00:00")
        self.assertEqual(b.content_type, "application/pdf")

        self.assertEqual(len(report.added), 2)
        self.assertTrue(report.changed)

    def test_merge_idempotent(self):
        current = OrderedDict([(1, entry(1, "a.txt")), (2, entry(2, "b.txt"))])
        listing = [item("a.txt"), item("b.txt")]
        files, report = self.rec.merge(current, listing, {}, self.alloc)
        self.assertEqual(files, current)
        self.assertEqual(report.kept, 2)
        self.assertFalse(report.changed)

        again, report = self.rec.merge(files, listing, {}, self.alloc)
        self.assertEqual(again, files)

    def test_merge_retires(self):
        current = OrderedDict([(1, entry(1, "a.txt")), (2, entry(2, "b.txt"))])
        files, report = self.rec.merge(current, [item("a.txt")], {}, self.alloc)
        self.assertFalse(files[1].deleted)
        self.assertTrue(files[2].deleted)
        self.assertEqual(files[2].deleted_by, DELETED_BY_SCAN)
        self.assertEqual([e.id for e in report.retired], [2])
        self.assertFalse(current[2].deleted)

        # deleted entries are kept as history and never revived by a later scan of another item
        again, report = self.rec.merge(files, [item("a.txt")], {}, self.alloc)
        self.assertTrue(again[2].deleted)
        self.assertEqual(again[2].deleted_at, files[2].deleted_at)
        self.assertFalse(report.changed)

    def test_merge_protected(self):
        current = OrderedDict([(1, entry(1, "a.txt")), (2, entry(2, "b.txt"))])
        files, report = self.rec.merge(current, [item("a.txt")], {}, self.alloc, protected=[2])
        self.assertFalse(files[2].deleted)
        self.assertEqual(report.retired, [])

    def test_merge_reappearing_after_scan_delete(self):
        gone = entry(2, "b.txt").soft_deleted(DELETED_BY_SCAN, "2024-03-02T00:00:00.000+00:00")
        current = OrderedDict([(2, gone)])
        files, report = self.rec.merge(current, [item("b.txt")], {}, self.alloc)
        self.assertTrue(files[2].deleted)
        self.assertEqual(files[100].storage_key, "b.txt")
        self.assertFalse(files[100].deleted)

    def test_merge_deleted_key_readded(self):
        deleted = entry(2, "b.txt").soft_deleted(DELETED_BY_REQUEST, "2024-03-02T00:00:00.000+00:00")
        current = OrderedDict([(2, deleted)])

        # without an orphan record, a re-added object is a new file whatever its age
        files, report = self.rec.merge(current, [item("b.txt")], {}, self.alloc)
        self.assertEqual(report.leftovers, [])
        self.assertEqual(files[100].storage_key, "b.txt")
        self.assertTrue(files[2].deleted)

    def test_merge_orphans(self):
        orphans = {"old.txt": {"size": 10, "modified": "2024-03-01T12:00:00.000+00:00",
                               "abandoned": "2024-03-02T00:00:00.000+00:00"}}
        files, report = self.rec.merge({}, [item("old.txt")], {}, self.alloc, orphans=orphans)
        self.assertEqual(report.leftovers, ["old.txt"])
        self.assertEqual(files, {})

        # a different modification time or size means a different object
        files, report = self.rec.merge({}, [item("old.txt", modified="2024-03-01T11:00:00Z")],
                                       {}, self.alloc, orphans=orphans)
        self.assertEqual(report.leftovers, [])
        self.assertEqual(len(report.added), 1)
        files, report = self.rec.merge({}, [item("old.txt", 11)], {}, self.alloc, orphans=orphans)
        self.assertEqual(report.leftovers, [])
        self.assertEqual(len(report.added), 1)

    def test_is_leftover(self):
        orphan = {"size": 10, "modified": None, "abandoned": "2024-03-02T00:00:00.000+00:00"}
        self.assertTrue(self.rec.is_leftover(item("b.txt"), orphan))
        self.assertFalse(self.rec.is_leftover(item("b.txt", 9), orphan))
        self.assertFalse(self.rec.is_leftover(item("b.txt", modified="2024-03-03T00:00:00Z"),
                                              orphan))
        self.assertFalse(self.rec.is_leftover(item("b.txt", modified=None), orphan))

        orphan["modified"] = "2024-03-01T12:00:00Z"
        self.assertTrue(self.rec.is_leftover(item("b.txt"), orphan))
        self.assertFalse(self.rec.is_leftover(item("b.txt", modified="2024-03-01T12:00:01Z"),
                                              orphan))

    def test_merge_duplicate_keys(self):
        files, report = self.rec.merge({}, [item("a.txt", 5), item("a.txt", 7)], {}, self.alloc)
        self.assertEqual(len(files), 1)
        self.assertEqual(files[100].size, 7)
        self.assertEqual(report.superseded, 1)

    def test_report(self):
        report = rec.ReconcileReport()
        report.added.append(entry(1, "a.txt"))
        report.kept = 3
        self.assertEqual(str(report), "1 added, 0 retired, 3 kept")
        self.assertEqual(report.to_dict()['added'], ["a.txt"])


class TestReconcileJob(test.TestCase):

    def test_success(self):
        report = rec.ReconcileReport()
        job = rec.ReconcileJob(lambda j: report).start()
        self.assertIs(job.wait(5), report)
        self.assertTrue(job.done)
        self.assertIsNone(job.error)

    def test_failure(self):
        def fail(job):
            raise RemoteUnavailable("store is down")
        job = rec.ReconcileJob(fail).start()
        with self.assertRaises(RemoteUnavailable):
            job.wait(5)

        def boom(job):
            raise KeyError("goob")
        job = rec.ReconcileJob(boom).start()
        with self.assertRaises(RemoteUnavailable) as cm:
            job.wait(5)
        self.assertTrue(isinstance(cm.exception.cause, KeyError))

    def test_timeout_and_cancel(self):
        gate = threading.Event()
        def work(job):
            gate.wait(5)
            return None if job.cancelled else rec.ReconcileReport()
        job = rec.ReconcileJob(work).start()
        with self.assertRaises(RemoteUnavailable):
            job.wait(0.05)
        self.assertFalse(job.done)

        job.cancel()
        self.assertTrue(job.cancelled)
        gate.set()
        self.assertIsNone(job.wait(5))


if __name__ == '__main__':
    test.main()
