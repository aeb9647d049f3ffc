from setuptools import setup

setup(
    name='multiWGCNA',  # the name of your package
    packages=['multiWGCNA'],  # same as above
    version='1.0.0',  # version number
    license='MIT',  # license type
    description='multiWGCNA is a Python package to compare weighted gene co-expression networks (WGCNA) across '
                'experimental conditions',
    # short description
    keywords=['multiWGCNA', 'WGCNA', 'bulk', 'gene clustering', 'network analysis', 'module preservation'],  #
    install_requires=[  # these can also include >, <, == to enforce version compatibility
        'pandas>=2.1.0',  # make sure the packages you put here are those NOT included in the
        'numpy>=1.24.0',  # base python distribution
        'scipy>=1.9.1',
        'scikit-learn>=1.2.2',
        'statsmodels>=0.14.0',
        'matplotlib>=3.5.2',
        'anndata>=0.8.0',
        'psutil>=5.9.0',
    ],
    extras_require={
        'test': ['pytest>=7.0'],
    },
    classifiers=[  # choose from here: https://pypi.org/classifiers/
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Science/Research ',
        'Topic :: Scientific/Engineering :: Bio-Informatics',
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3.10',
    ],
)
