import os
from setuptools import setup, find_namespace_packages
from setuptools.command.build_py import build_py as _build

CLASSIFIERS = [
    'Operating System :: POSIX',
    'Operating System :: MacOS :: MacOS X',
    'Intended Audience :: Developers',
    'Programming Language :: Python',
    'Programming Language :: Python :: 3',
    'Topic :: Communications :: File Sharing'
]

srcdir = os.path.dirname(os.path.abspath(__file__))
pydir = os.path.join(srcdir, 'python')
pkgdir = os.environ.get('PACKAGE_DIR', srcdir)

def get_version():
    out = "0.0.dev0"
    versfile = os.path.join(pkgdir, 'VERSION')
    if os.path.exists(versfile):
        with open(versfile) as fd:
            parts = fd.readline().split()
        if len(parts) > 0:
            out = parts[-1]
    return out

def write_version_mod(version):
    versmodf = os.path.join(pydir, "lyreteams", "base", "version.py")
    print("setting version for lyreteams to "+version)
    with open(versmodf, 'w') as fd:
        fd.write('"""')
        fd.write("""
An identification of the package version.  Note that this module file gets
(over-) written by the build process.
""")
        fd.write('"""\n\n')
        fd.write('__version__ = "')
        fd.write(version)
        fd.write('"\n')

class build(_build):

    def run(self):
        write_version_mod(get_version())
        _build.run(self)

setup(name='lyreteams',
      version=get_version(),
      description="lyreteams: the remote-storage catalog of the LyreTeams file-sharing service",
      python_requires='>=3.8',
      scripts=[ 'scripts/lyreadm.py' ],
      package_dir={'': 'python'},
      packages=find_namespace_packages(where='python', include=['lyreteams.*']),
      install_requires=[ 'webdavclient3', 'requests', 'lxml', 'PyYAML' ],
      extras_require={ 'test': [ 'pytest' ] },
      cmdclass={'build_py': build},
      classifiers=CLASSIFIERS,
      zip_safe=False
)
