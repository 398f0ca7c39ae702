import os, json, tempfile, time
import unittest as test
from unittest.mock import Mock

from lyreteams.store import audit as aud
from lyreteams.store.codec import StoreLayout, dumps
from lyreteams.store.persist import DocumentPersister
from lyreteams.store.sim import FaultyGateway

tmpdir = tempfile.TemporaryDirectory(prefix="_test_audit.")

def tearDownModule():
    tmpdir.cleanup()

class TestAuditEvent(test.TestCase):

    def test_ctor(self):
        ev = aud.AuditEvent(aud.FILE_UPLOAD, "File uploaded: a.txt", "ava", {"fileId": 1})
        self.assertEqual(ev.kind, "FILE_UPLOAD")
        self.assertEqual(ev.actor, "ava")
        self.assertEqual(ev.details, {"fileId": 1})
        self.assertTrue(ev.timestamp)
        self.assertTrue(ev.id)

        ev = aud.AuditEvent(aud.SYSTEM, "started")
        self.assertEqual(ev.actor, aud.SYSTEM_ACTOR)
        self.assertEqual(ev.details, {})

        with self.assertRaises(ValueError):
            aud.AuditEvent("GOOBER", "huh?")

    def test_dict_form(self):
        ev = aud.AuditEvent(aud.USER_LOGIN, "User logged in", "ava", {"ip": "127.0.0.1"})
        data = ev.to_dict()
        self.assertEqual(list(data.keys()), ["id", "type", "timestamp", "message", "username",
                                             "details"])
        self.assertEqual(data['type'], "USER_LOGIN")
        self.assertEqual(data['username'], "ava")

        again = aud.AuditEvent.from_dict(data)
        self.assertEqual(again.to_dict(), data)

        with self.assertRaises(ValueError):
            aud.AuditEvent.from_dict({"type": "NOPE"})
        with self.assertRaises(ValueError):
            aud.AuditEvent.from_dict(["FILE_UPLOAD"])


class TestAuditLog(test.TestCase):

    def setUp(self):
        self.rootdir = tempfile.mkdtemp(dir=tmpdir.name)
        self.gw = FaultyGateway(self.rootdir)
        self.layout = StoreLayout("LyreTeams")
        for folder in self.layout.folders:
            self.gw.ensure_directory(folder)
        self.persister = DocumentPersister(self.gw, {'retry_delay': 0, 'verify_delay': 0,
                                                     'backup_keep': 3})
        self.log = aud.AuditLog(self.persister, self.layout)

    def tearDown(self):
        self.log.flush(5)

    def stored(self):
        return json.loads(self.gw.read_bytes(self.layout.audit_path).decode('utf-8'))

    def test_record_and_save(self):
        self.log(aud.AuditEvent(aud.FILE_UPLOAD, "File uploaded: a.txt", "ava"))
        self.log.record(aud.AuditEvent(aud.FILE_DELETE, "File deleted: a.txt", "bob"))
        self.assertTrue(self.log.flush(5))

        doc = self.stored()
        self.assertEqual([e['type'] for e in doc], ["FILE_UPLOAD", "FILE_DELETE"])

        names = [i['name'] for i in self.gw.list(self.layout.logs_folder)]
        self.assertTrue(any(n.startswith("logs_backup_") for n in names))

    def test_get_logs(self):
        for i in range(5):
            self.log(aud.AuditEvent(aud.USER_LOGIN if i % 2 else aud.FILE_UPLOAD, "event %d" % i))
        logs = self.log.get_logs()
        self.assertEqual([e['message'] for e in logs],
                         ["event 4", "event 3", "event 2", "event 1", "event 0"])
        logs = self.log.get_logs(2, 1)
        self.assertEqual([e['message'] for e in logs], ["event 3", "event 2"])
        logs = self.log.get_logs(kinds=[aud.USER_LOGIN])
        self.assertEqual([e['message'] for e in logs], ["event 3", "event 1"])

    def test_max_entries(self):
        log = aud.AuditLog(self.persister, self.layout, {'max_entries': 2})
        for i in range(4):
            log(aud.AuditEvent(aud.SYSTEM, "event %d" % i))
        log.flush(5)
        self.assertEqual([e['message'] for e in log.get_logs()], ["event 3", "event 2"])

    def test_load(self):
        events = [aud.AuditEvent(aud.SYSTEM, "old %d" % i).to_dict() for i in range(2)]
        self.gw.write(self.layout.audit_path, dumps(events + [{"type": "BOGUS"}]))

        self.log.load()
        self.assertEqual([e['message'] for e in self.log.get_logs()], ["old 1", "old 0"])
        self.log(aud.AuditEvent(aud.SYSTEM, "new"))
        self.log.flush(5)
        self.assertEqual([e['message'] for e in self.stored()], ["old 0", "old 1", "new"])

    def test_load_missing(self):
        self.log.load()
        self.assertEqual(self.log.get_logs(), [])

    def test_load_corrupted(self):
        self.gw.write(self.layout.audit_path, b"[{\"id\": ")
        self.log.load()
        self.assertEqual(self.log.get_logs(), [])
        self.assertFalse(self.gw.exists(self.layout.audit_path))
        names = [i['name'] for i in self.gw.list(self.layout.logs_folder)]
        self.assertTrue(any(n.startswith("logs_backup_corrupted_") for n in names))

    def test_load_corrupted_restores_backup(self):
        event = aud.AuditEvent(aud.SYSTEM, "saved").to_dict()
        self.gw.write(self.layout.logs_folder + "/logs_backup_1709294400000.json", dumps([event]))
        self.gw.write(self.layout.audit_path, b"{\"not\": \"a list\"}")
        self.log.load()
        self.assertEqual([e['message'] for e in self.log.get_logs()], ["saved"])

    def test_load_unreadable(self):
        self.gw.write(self.layout.audit_path, dumps([aud.AuditEvent(aud.SYSTEM, "x").to_dict()]))
        self.gw.fail("read")
        self.log.load()
        self.assertEqual(self.log.get_logs(), [])

    def test_save_failure_retained(self):
        self.gw.fail("write", 4)
        self.log(aud.AuditEvent(aud.SYSTEM, "first"))
        self.log.flush(5)
        self.assertFalse(self.gw.exists(self.layout.audit_path))

        self.log(aud.AuditEvent(aud.SYSTEM, "second"))
        self.log.flush(5)
        self.assertEqual([e['message'] for e in self.stored()], ["first", "second"])


if __name__ == '__main__':
    test.main()
