from setuptools import setup

exec(compile(open('ruletmle/version.py').read(),
             'ruletmle/version.py', 'exec'))


setup(name='ruletmle',
      version=__version__,
      description='ruletmle implements iterative TMLE for the mean outcome under a user-specified treatment rule',
      keywords='TMLE',
      packages=['ruletmle'],
      include_package_data=True,
      install_requires=['numpy',
                        'pandas',
                        'scipy',
                        'statsmodels>=0.14'],
      extras_require={'test': ['pytest']}
      )
