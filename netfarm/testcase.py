import os
import sys
import shutil
import logging
import tempfile
import unittest

from netfarm.conf import Config


class ColorHandler(logging.StreamHandler):

    level_color = {
        logging.DEBUG: "black",
        logging.INFO: "light_gray",
        logging.WARNING: "yellow",
        logging.ERROR: "red"
    }

    color_code = dict(
        black=30,
        red=31,
        green=32,
        yellow=33,
        blue=34,
        magenta=35,
        cyan=36,
        white=37,
        light_gray='0;37',
        dark_gray='1;30'
    )

    def emit(self, record):
        try:
            msg = self.format(record)
            color_name = self.level_color.get(record.levelno, "black")
            color_code = self.color_code[color_name]
            stream = self.stream
            stream.write(f'\x1b[{color_code}m{msg}\x1b[0m')
            stream.write(self.terminator)
            self.flush()
        except Exception:  # pylint: disable=broad-except
            self.handleError(record)


HANDLER = ColorHandler(sys.stdout)
HANDLER.setFormatter(
    logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
)
logging.getLogger().addHandler(HANDLER)


class AsyncioTestCase(unittest.IsolatedAsyncioTestCase):

    maxDiff = None

    def run(self, result=None):
        if os.environ.get('NETFARM_TEST_DEBUG'):
            logging.getLogger('netfarm').setLevel(logging.DEBUG)
        return super().run(result)


class DataDirTestCase(AsyncioTestCase):
    """
    Provides `self.conf` pointing at a throwaway data directory.
    """

    def setUp(self):
        super().setUp()
        self.data_dir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.data_dir, True)
        self.conf = Config(data_dir=self.data_dir, config=os.path.join(self.data_dir, 'netfarm_settings.yml'))
