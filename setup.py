from setuptools import setup, find_packages

setup(
    name='RXNmap',
    version='0.1.0',
    author='Louie Slocombe, Camerian Millsaps, Reza Shahjahan, Kamesh Narasimhan, and Sara Walker',
    author_email='louies@hotmail.co.uk',
    description='Atom-atom mapping of biochemical reactions by fragment matching and iterative winner selection.',
    long_description=open('README.md').read(),
    long_description_content_type='text/markdown',
    packages=find_packages(exclude=['tests', 'tests.*']),
    classifiers=[
        'Programming Language :: Python :: 3',
        'License :: OSI Approved :: MIT License',
        'Operating System :: OS Independent',
    ],
    python_requires='>=3.10',
    install_requires=[
        'numpy',
        'networkx',
        'pandas',
        'rdkit',
        'chemparse',
        'drfp',
    ],
    extras_require={
        'dev': [
            'pytest',
            'pytest-cov',
        ],
    },
)
