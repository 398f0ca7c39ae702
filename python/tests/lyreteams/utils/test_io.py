import os, io, threading, time, logging, tempfile
import unittest as test

import lyreteams.utils.io as utils

tmpd = None
loghdlr = None
rootlog = None
def setUpModule():
    global tmpd, loghdlr, rootlog
    tmpd = tempfile.TemporaryDirectory(prefix="_test_io.")
    rootlog = logging.getLogger()
    loghdlr = logging.FileHandler(os.path.join(tmpd.name, "test_io.log"))
    loghdlr.setLevel(logging.INFO)
    rootlog.addHandler(loghdlr)

def tearDownModule():
    global loghdlr
    if loghdlr:
        if rootlog:
            rootlog.removeHandler(loghdlr)
        loghdlr.flush()
        loghdlr.close()
        loghdlr = None
    tmpd.cleanup()

class TestLockedOpen(test.TestCase):

    class OtherThread(threading.Thread):
        def __init__(self, func, pause=0.05):
            threading.Thread.__init__(self)
            self.f = func
            self.pause = pause
        def run(self):
            if self.f:
                time.sleep(self.pause)
                self.f('o')

    def lockedop(self, who, exclusive=False, sleep=0.3):
        with utils.locked_open(self.lfile, exclusive) as fd:
            self.assertFalse(fd.closed)
            self.rfd.write(who+'a')
            time.sleep(sleep)
            self.rfd.write(who+'r')
        self.assertTrue(fd.closed)

    def run_pair(self, mine, theirs):
        t = self.OtherThread(lambda who: self.lockedop(who, theirs))
        with open(self.rfile, 'w') as self.rfd:
            t.start()
            self.lockedop('t', mine)
            t.join()
        with open(self.rfile) as fd:
            return fd.read()

    def setUp(self):
        self.lfile = os.path.join(tmpd.name, "locked.txt")
        self.rfile = os.path.join(tmpd.name, "result.txt")
        with open(self.lfile, 'w') as fd:
            fd.write("lyre")
        self.rfd = None

    def tearDown(self):
        for f in (self.lfile, self.rfile):
            if os.path.exists(f):
                os.remove(f)

    def test_shared_reads(self):
        self.assertEqual(self.run_pair(False, False), "taoatror")

    def test_exclusive_writes(self):
        self.assertEqual(self.run_pair(True, True), "tatroaor")

    def test_write_blocks_read(self):
        self.assertEqual(self.run_pair(True, False), "tatroaor")

    def test_read_blocks_write(self):
        self.assertEqual(self.run_pair(False, True), "tatroaor")

    def test_write_does_not_truncate(self):
        with utils.locked_open(self.lfile, True) as fd:
            pass
        with open(self.lfile) as fd:
            self.assertEqual(fd.read(), "lyre")

    def test_open_missing(self):
        missing = os.path.join(tmpd.name, "goober", "gurn.txt")
        with self.assertRaises(IOError):
            with utils.locked_open(missing):
                pass

        # the lock was released
        lock = utils.PathLock.for_path(missing)
        self.assertEqual(lock.readers, 0)
        self.assertFalse(lock.writing)

    def test_waiting_writer_blocks_new_readers(self):
        lock = utils.PathLock()
        order = []
        lock.acquire()
        def write():
            lock.acquire(True)
            order.append("w")
            lock.release(True)
        def read():
            lock.acquire()
            order.append("r")
            lock.release()
        writer = threading.Thread(target=write)
        writer.start()
        time.sleep(0.1)
        reader = threading.Thread(target=read)
        reader.start()
        time.sleep(0.1)
        self.assertEqual(order, [])
        lock.release()
        writer.join(5)
        reader.join(5)
        self.assertEqual(order, ["w", "r"])


class TestBytesIO(test.TestCase):

    def setUp(self):
        self.bfile = os.path.join(tmpd.name, "data.bin")

    def tearDown(self):
        if os.path.exists(self.bfile):
            os.remove(self.bfile)

    def test_write_read_bytes(self):
        utils.write_bytes(b"a much longer first version", self.bfile)
        utils.write_bytes(b"second", self.bfile)
        self.assertEqual(utils.read_bytes(self.bfile), b"second")

    def test_write_stream(self):
        data = os.urandom(200000)
        utils.write_bytes(io.BytesIO(data), self.bfile)
        self.assertEqual(os.path.getsize(self.bfile), 200000)
        self.assertEqual(utils.read_bytes(self.bfile), data)

    def test_read_missing(self):
        with self.assertRaises(IOError):
            utils.read_bytes(os.path.join(tmpd.name, "goober.bin"))


if __name__ == '__main__':
    test.main()
